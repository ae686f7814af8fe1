"""Browser layer: provider backends and page-side instrumentation."""

from .provider import BrowserProvider, LocatorHandle, PlaywrightProvider, ResponseInfo
from .observer import (
    BrowserObserver,
    ConsoleEvent,
    NetworkEvent,
    ObserverEvent,
    PageErrorEvent,
    collect_performance_metrics,
    format_event,
    redaction_patterns,
)
from .deterministic import DeterministicOptions, apply_deterministic_settings, install_layout_shift_capture
from .annotate import annotate_action_screenshot
from .overlay import install_browser_overlay
from .routing import MockRouter, MockRule, glob_to_regex

__all__ = [
    # Providers
    "BrowserProvider",
    "LocatorHandle",
    "PlaywrightProvider",
    "ResponseInfo",
    # Observer
    "BrowserObserver",
    "ConsoleEvent",
    "NetworkEvent",
    "ObserverEvent",
    "PageErrorEvent",
    "collect_performance_metrics",
    "format_event",
    "redaction_patterns",
    # Page environment
    "DeterministicOptions",
    "apply_deterministic_settings",
    "install_layout_shift_capture",
    "annotate_action_screenshot",
    "install_browser_overlay",
    # Routing
    "MockRouter",
    "MockRule",
    "glob_to_regex",
]
