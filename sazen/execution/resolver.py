"""Target resolution.

Turns an action's target descriptor into an ordered list of locator
candidates against the most recent snapshot. Resolution is pure: it only
reads the snapshot and produces provider-agnostic LocatorSpec values, so a
target that cannot be resolved fails before any browser call is made.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional

from ..actions.schema import CssTarget, NodeIdTarget, NodeTarget, RoleNameTarget, StableRefTarget
from ..errors import MissingTargetError, NodeNotFoundError, StableRefNotFoundError
from ..snapshot.models import Node, Snapshot

LocatorStrategy = Literal["test_id", "css", "role"]


def escape_attribute_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def normalize_comparable_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().lower()


@dataclass(frozen=True)
class LocatorSpec:
    """One way of locating an element, interpreted by the browser provider.

    ``test_id`` and ``css`` use ``value``; ``role`` uses ``role``/``name``
    and ``exact`` (None leaves name matching to the provider's default).
    The provider always takes the first match.
    """
    label: str
    strategy: LocatorStrategy
    value: str = ""
    role: str = ""
    name: str = ""
    exact: Optional[bool] = None

    @classmethod
    def test_id(cls, label: str, test_id: str) -> "LocatorSpec":
        return cls(label=label, strategy="test_id", value=test_id)

    @classmethod
    def css(cls, label: str, selector: str) -> "LocatorSpec":
        return cls(label=label, strategy="css", value=selector)

    @classmethod
    def by_role(cls, label: str, role: str, name: str, exact: Optional[bool] = None) -> "LocatorSpec":
        return cls(label=label, strategy="role", role=role, name=name, exact=exact)


@dataclass
class ResolvedTarget:
    """Outcome of resolving one target: diagnostics label, candidates, chosen node."""
    label: str
    candidates: list[LocatorSpec]
    node: Optional[Node] = None
    match_count: int = 0
    ambiguous: bool = field(init=False)

    def __post_init__(self):
        self.ambiguous = self.match_count > 1


def dedupe_candidates(candidates: Iterable[LocatorSpec]) -> list[LocatorSpec]:
    """Drop later candidates whose label was already seen, keeping order."""
    seen = set()
    deduped = []
    for candidate in candidates:
        if candidate.label in seen:
            continue
        seen.add(candidate.label)
        deduped.append(candidate)
    return deduped


def score_node_for_interaction(node: Node) -> int:
    score = 0
    if node.visible:
        score += 4
    if node.enabled:
        score += 2
    if node.interactive:
        score += 2
    if node.bounding_box.has_area:
        score += 1
    return score


def rank_matches(nodes: Iterable[Node]) -> list[Node]:
    """Highest interaction score first; ties keep snapshot order."""
    return sorted(nodes, key=score_node_for_interaction, reverse=True)


def locator_candidates_for_node(node: Node) -> list[LocatorSpec]:
    """Candidates for one node, most specific strategy first, structural path last."""
    attrs = node.attributes
    candidates = []

    test_id = attrs.get("data-testid")
    if test_id:
        candidates.append(LocatorSpec.test_id(f"testId:{test_id}", test_id))

    element_id = attrs.get("id")
    if element_id:
        candidates.append(LocatorSpec.css(f"id:{element_id}", f'[id="{escape_attribute_value(element_id)}"]'))

    href = attrs.get("href")
    if href:
        candidates.append(LocatorSpec.css(f"href:{href}", f'a[href="{escape_attribute_value(href)}"]'))

    name_attr = attrs.get("name")
    if name_attr:
        candidates.append(
            LocatorSpec.css(
                f"{node.tag}[name={name_attr}]",
                f'{node.tag}[name="{escape_attribute_value(name_attr)}"]',
            )
        )

    if node.role != "generic" and node.name:
        candidates.append(LocatorSpec.by_role(f"role:{node.role} name:{node.name}", node.role, node.name))

    candidates.append(LocatorSpec.css(f"path:{node.path}", node.path))

    return dedupe_candidates(candidates)


def _candidates_for_ranked(nodes: list[Node]) -> list[LocatorSpec]:
    candidates = []
    for node in nodes:
        candidates.extend(locator_candidates_for_node(node))
    return candidates


def _resolve_node_id(node_id: str, snapshot: Snapshot) -> ResolvedTarget:
    node = snapshot.find(node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    return ResolvedTarget(
        label=f"nodeId:{node_id}",
        candidates=locator_candidates_for_node(node),
        node=node,
        match_count=1,
    )


def resolve_target(
    snapshot: Snapshot,
    node_id: Optional[str] = None,
    target: Optional[NodeTarget] = None,
) -> ResolvedTarget:
    """Resolve ``node_id`` (preferred) or ``target`` against ``snapshot``.

    Raises:
        NodeNotFoundError: node id not present in the snapshot.
        StableRefNotFoundError: no node carries the stableRef.
        MissingTargetError: neither node id nor target given.
    """
    if node_id:
        return _resolve_node_id(node_id, snapshot)

    if target is None:
        raise MissingTargetError()

    match target:
        case NodeIdTarget(node_id=target_node_id):
            return _resolve_node_id(target_node_id, snapshot)

        case StableRefTarget(value=stable_ref):
            matches = [node for node in snapshot.nodes if node.stable_ref == stable_ref]
            if not matches:
                raise StableRefNotFoundError(stable_ref)
            ranked = rank_matches(matches)
            return ResolvedTarget(
                label=f"stableRef:{stable_ref}",
                candidates=dedupe_candidates(_candidates_for_ranked(ranked)),
                node=ranked[0],
                match_count=len(matches),
            )

        case RoleNameTarget(role=role, name=name):
            wanted = normalize_comparable_text(name)
            matches = [
                node for node in snapshot.nodes
                if node.role == role and normalize_comparable_text(node.name) == wanted
            ]
            candidates = _candidates_for_ranked(rank_matches(matches))
            # Provider-side fallbacks for elements the snapshot named differently
            candidates.append(LocatorSpec.by_role(f"getByRole({role}, {name}, exact=true)", role, name, exact=True))
            candidates.append(LocatorSpec.by_role(f"getByRole({role}, {name}, exact=false)", role, name))
            return ResolvedTarget(
                label=f"roleName:{role}:{name}",
                candidates=dedupe_candidates(candidates),
                match_count=len(matches),
            )

        case CssTarget(selector=selector):
            return ResolvedTarget(
                label=f"css:{selector}",
                candidates=[LocatorSpec.css(f"css:{selector}", selector)],
            )

    raise MissingTargetError()
