"""Restricted CSS selector grammar for replay invariants.

Only ``tag``, ``#id`` and a single ``[attr=value]`` / ``[attr*=value]``
(in that order, each optional) are understood. Anything else is reported
as unsupported so replay can skip the check instead of guessing.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Literal, Optional

from ..snapshot.models import Node

_UNSUPPORTED_CHARS = re.compile(r"[\s>+~:]")
_SIMPLE_SELECTOR = re.compile(
    r"^(?P<tag>[a-z][a-z0-9_-]*)?"
    r"(?:#(?P<id>[a-zA-Z0-9_-]+))?"
    r"(?:\[(?P<attr>[a-zA-Z0-9_-]+)(?P<op>\*=|=)['\"]?(?P<value>[^'\"\]]+)['\"]?\])?$"
)


@dataclass(frozen=True)
class AttributeCondition:
    name: str
    operator: Literal["=", "*="]
    value: str


@dataclass(frozen=True)
class SimpleSelector:
    tag: Optional[str] = None
    id: Optional[str] = None
    attribute: Optional[AttributeCondition] = None

    def matches(self, node: Node) -> bool:
        if self.tag and node.tag != self.tag:
            return False
        if self.id and node.attributes.get("id", "") != self.id:
            return False
        if self.attribute:
            actual = node.attributes.get(self.attribute.name, "")
            if self.attribute.operator == "=":
                return actual == self.attribute.value
            return self.attribute.value in actual
        return True


@dataclass(frozen=True)
class SelectorInvariantResult:
    supported: bool
    match_count: int = 0


def parse_simple_selector(selector: str) -> Optional[SimpleSelector]:
    """Parse ``selector``, or return None when it is outside the grammar."""
    trimmed = selector.strip()
    if not trimmed or _UNSUPPORTED_CHARS.search(trimmed):
        return None

    match = _SIMPLE_SELECTOR.match(trimmed)
    if match is None:
        return None

    attribute = None
    if match.group("attr") and match.group("op") and match.group("value"):
        attribute = AttributeCondition(
            name=match.group("attr"),
            operator="*=" if match.group("op") == "*=" else "=",
            value=match.group("value"),
        )

    tag = match.group("tag")
    return SimpleSelector(
        tag=tag.lower() if tag else None,
        id=match.group("id") or None,
        attribute=attribute,
    )


def evaluate_selector_invariant(selector: str, nodes: Iterable[Node]) -> SelectorInvariantResult:
    parsed = parse_simple_selector(selector)
    if parsed is None:
        return SelectorInvariantResult(supported=False)
    return SelectorInvariantResult(
        supported=True,
        match_count=sum(1 for node in nodes if parsed.matches(node)),
    )
