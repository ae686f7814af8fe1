"""Network mock rules for context-wide request interception."""

import json
import re
from dataclasses import dataclass, field
from typing import Optional

from ..actions.schema import MockRoute


def glob_to_regex(pattern: str) -> re.Pattern:
    """``**`` matches anything, ``*`` matches within one path segment."""
    parts = []
    index = 0
    while index < len(pattern):
        if pattern.startswith("**", index):
            parts.append(".*")
            index += 2
        elif pattern[index] == "*":
            parts.append("[^/]*")
            index += 1
        else:
            parts.append(re.escape(pattern[index]))
            index += 1
    return re.compile("^" + "".join(parts) + "$")


@dataclass(frozen=True)
class MockResponse:
    status: int
    headers: dict[str, str]
    body: str


@dataclass(frozen=True)
class MockRule:
    matcher: re.Pattern
    status: int
    body: str
    content_type: str
    method: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_route(cls, route: MockRoute) -> "MockRule":
        has_json = route.json_body is not None
        if route.body is not None:
            body = route.body
        elif has_json:
            body = json.dumps(route.json_body)
        else:
            body = ""
        content_type = route.content_type or ("application/json" if has_json else "text/plain")
        return cls(
            matcher=glob_to_regex(route.url_pattern),
            status=route.status or 200,
            body=body,
            content_type=content_type,
            method=route.method.upper() if route.method else None,
            headers=dict(route.headers or {}),
        )

    def matches(self, method: str, url: str) -> bool:
        if self.method and method.upper() != self.method:
            return False
        return bool(self.matcher.match(url))

    def response(self) -> MockResponse:
        return MockResponse(
            status=self.status,
            headers={"content-type": self.content_type, **self.headers},
            body=self.body,
        )


class MockRouter:
    """Ordered mock rules; the first rule that matches wins."""

    def __init__(self):
        self.rules: list[MockRule] = []

    def add(self, route: MockRoute) -> MockRule:
        rule = MockRule.from_route(route)
        self.rules.append(rule)
        return rule

    def match(self, method: str, url: str) -> Optional[MockResponse]:
        for rule in self.rules:
            if rule.matches(method, url):
                return rule.response()
        return None

    def __len__(self) -> int:
        return len(self.rules)
