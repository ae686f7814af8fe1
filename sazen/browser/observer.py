"""Page event observer.

Buffers console messages, uncaught page errors and network activity for
the session, redacting secrets and dropping well-known noise. The action
pipeline drains the buffer after every action, so each result carries only
the events it caused.
"""

import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal, Optional, Union

import structlog

from ..config import RedactionPack
from ..execution.results import PerformanceMetrics

if TYPE_CHECKING:
    from .provider import BrowserProvider

logger = structlog.get_logger()

ConsoleLevel = Literal["log", "debug", "info", "warn", "error"]
NetworkPhase = Literal["request", "response", "request_failed"]

REDACTED = "[REDACTED]"

_DEFAULT_REDACTIONS = (
    re.compile(r"bearer\s+[a-z0-9._-]+", re.IGNORECASE),
    re.compile(r'("password"\s*:\s*")[^"]+', re.IGNORECASE),
    re.compile(r"(token=)[^&\s]+", re.IGNORECASE),
    re.compile(r"(authorization:\s*)[^\s]+", re.IGNORECASE),
)

_STRICT_REDACTIONS = (
    re.compile(r"(set-cookie:\s*)[^\n]+", re.IGNORECASE),
    re.compile(r"(api[-_]?key\s*[=:]\s*)[^\s,;]+", re.IGNORECASE),
    re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE),
)


def redaction_patterns(pack: RedactionPack | str) -> tuple[re.Pattern, ...]:
    """Built-in redaction rules for a pack name."""
    pack = RedactionPack(pack)
    if pack == RedactionPack.OFF:
        return ()
    if pack == RedactionPack.STRICT:
        return _DEFAULT_REDACTIONS + _STRICT_REDACTIONS
    return _DEFAULT_REDACTIONS


def normalize_console_level(level: str) -> ConsoleLevel:
    if level == "warning":
        return "warn"
    if level == "assert":
        return "error"
    if level == "trace":
        return "debug"
    if level in ("log", "debug", "info", "warn", "error"):
        return level
    return "log"


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class ConsoleEvent:
    seq: int
    timestamp: int
    level: ConsoleLevel
    text: str
    location: Optional[dict] = None
    kind: Literal["console"] = "console"

    def to_dict(self) -> dict:
        return _drop_none({
            "kind": self.kind,
            "seq": self.seq,
            "timestamp": self.timestamp,
            "level": self.level,
            "text": self.text,
            "location": self.location,
        })


@dataclass(frozen=True)
class PageErrorEvent:
    seq: int
    timestamp: int
    message: str
    stack: Optional[str] = None
    kind: Literal["page_error"] = "page_error"

    def to_dict(self) -> dict:
        return _drop_none({
            "kind": self.kind,
            "seq": self.seq,
            "timestamp": self.timestamp,
            "message": self.message,
            "stack": self.stack,
        })


@dataclass(frozen=True)
class NetworkEvent:
    seq: int
    timestamp: int
    phase: NetworkPhase
    method: str
    url: str
    resource_type: str
    status: Optional[int] = None
    status_text: Optional[str] = None
    failure_text: Optional[str] = None
    kind: Literal["network"] = "network"

    def to_dict(self) -> dict:
        return _drop_none({
            "kind": self.kind,
            "seq": self.seq,
            "timestamp": self.timestamp,
            "phase": self.phase,
            "method": self.method,
            "url": self.url,
            "resourceType": self.resource_type,
            "status": self.status,
            "statusText": self.status_text,
            "failureText": self.failure_text,
        })


ObserverEvent = Union[ConsoleEvent, PageErrorEvent, NetworkEvent]
Listener = Callable[[ObserverEvent], None]


def is_likely_noise(event: ObserverEvent) -> bool:
    """Favicon misses and autocomplete/404 console chatter."""
    if isinstance(event, NetworkEvent):
        if "favicon.ico" in event.url.lower():
            if event.phase == "request_failed":
                return True
            if event.phase == "response" and event.status == 404:
                return True
        return False

    if isinstance(event, ConsoleEvent):
        text = event.text.lower()
        if "failed to load resource" in text and "404" in text:
            return True
        if "input elements should have autocomplete attributes" in text:
            return True

    return False


def format_event(event: ObserverEvent) -> str:
    """One-line human summary of an event."""
    if isinstance(event, ConsoleEvent):
        return f"[console.{event.level}] {event.text}"
    if isinstance(event, PageErrorEvent):
        return f"[page_error] {event.message}"
    if event.phase == "request":
        return f"[network] -> {event.method} {event.url}"
    if event.phase == "response":
        return f"[network] <- {event.method} {event.url} {event.status or ''}".strip()
    return f"[network] xx {event.method} {event.url} {event.failure_text or 'failed'}"


@dataclass
class BrowserObserver:
    """Event buffer fed by the browser provider's page/context hooks."""

    redactions: tuple[re.Pattern, ...] = ()
    noise_filtering: bool = True
    _events: list = field(default_factory=list, init=False, repr=False)
    _listeners: list = field(default_factory=list, init=False, repr=False)
    _seq: int = field(default=1, init=False, repr=False)
    _drain_cursor: int = field(default=0, init=False, repr=False)

    @classmethod
    def for_pack(cls, pack: RedactionPack | str, noise_filtering: bool = True) -> "BrowserObserver":
        return cls(redactions=redaction_patterns(pack), noise_filtering=noise_filtering)

    # ==========================================================================
    # Provider hooks
    # ==========================================================================

    def on_console(self, level: str, text: str, location: Optional[dict] = None) -> None:
        self._push(ConsoleEvent(
            seq=self._next_seq(),
            timestamp=_now_ms(),
            level=normalize_console_level(level),
            text=self.redact(text),
            location=location or None,
        ))

    def on_page_error(self, message: str, stack: Optional[str] = None) -> None:
        self._push(PageErrorEvent(
            seq=self._next_seq(),
            timestamp=_now_ms(),
            message=self.redact(message),
            stack=self.redact(stack or ""),
        ))

    def on_request(self, method: str, url: str, resource_type: str) -> None:
        self._push(NetworkEvent(
            seq=self._next_seq(),
            timestamp=_now_ms(),
            phase="request",
            method=method,
            url=url,
            resource_type=resource_type,
        ))

    def on_response(self, method: str, url: str, resource_type: str, status: int, status_text: str = "") -> None:
        self._push(NetworkEvent(
            seq=self._next_seq(),
            timestamp=_now_ms(),
            phase="response",
            method=method,
            url=url,
            resource_type=resource_type,
            status=status,
            status_text=status_text,
        ))

    def on_request_failed(
        self,
        method: str,
        url: str,
        resource_type: str,
        failure_text: Optional[str] = None,
    ) -> None:
        self._push(NetworkEvent(
            seq=self._next_seq(),
            timestamp=_now_ms(),
            phase="request_failed",
            method=method,
            url=url,
            resource_type=resource_type,
            failure_text=failure_text,
        ))

    # ==========================================================================
    # Consumers
    # ==========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def drain(self) -> list[ObserverEvent]:
        """Events recorded since the previous drain."""
        chunk = self._events[self._drain_cursor:]
        self._drain_cursor = len(self._events)
        return chunk

    def all(self) -> list[ObserverEvent]:
        return list(self._events)

    def redact(self, text: str) -> str:
        """Replace secrets; a pattern's first group is kept as the visible prefix."""
        for pattern in self.redactions:
            text = pattern.sub(_redacted_match, text)
        return text

    def _next_seq(self) -> int:
        seq = self._seq
        self._seq += 1
        return seq

    def _push(self, event: ObserverEvent) -> None:
        if self.noise_filtering and is_likely_noise(event):
            return
        self._events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("Observer listener failed", error=str(e), kind=event.kind)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _redacted_match(match: re.Match) -> str:
    prefix = match.group(1) if match.re.groups else ""
    return f"{prefix}{REDACTED}"


PERFORMANCE_SCRIPT = """
() => {
  const nav = performance.getEntriesByType("navigation")[0];
  const paints = performance.getEntriesByType("paint");
  const paint = (name) => {
    const entry = paints.find((item) => item.name === name);
    return entry ? entry.startTime : null;
  };
  const shifts = (window.__agentLayoutShifts || []).map((entry) => entry.value);
  return {
    domContentLoadedMs: nav ? nav.domContentLoadedEventEnd : null,
    loadMs: nav ? nav.loadEventEnd : null,
    firstPaintMs: paint("first-paint"),
    firstContentfulPaintMs: paint("first-contentful-paint"),
    layoutShiftScore: shifts.reduce((sum, value) => sum + value, 0)
  };
}
"""


async def collect_performance_metrics(provider: "BrowserProvider") -> PerformanceMetrics:
    """Navigation/paint timings plus accumulated layout shift for the current page."""
    raw = await provider.evaluate(PERFORMANCE_SCRIPT)
    return PerformanceMetrics.from_dict(raw or {})
