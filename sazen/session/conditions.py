"""Condition runners used by the action pipeline.

Wait conditions, assertions, consent handling and interactive pauses. Each
runner talks to the page only through the BrowserProvider and raises on
failure; the pipeline turns the exception into the action's status.
"""

import asyncio
import re
import sys
import time
from typing import Callable, Optional, TextIO

import structlog

from ..actions.schema import (
    AssertCondition,
    NetworkIdleWait,
    NetworkResponseWait,
    SelectorAssert,
    SelectorBBoxMinAssert,
    SelectorOverlapMaxAssert,
    SelectorWait,
    TimeoutWait,
    TitleContainsAssert,
    UrlContainsAssert,
    WaitCondition,
)
from ..browser.provider import BrowserProvider, LocatorHandle, ResponseInfo
from ..errors import AssertionFailedError, ConsentNotFoundError
from ..execution.resolver import LocatorSpec
from ..snapshot.models import BoundingBox

logger = structlog.get_logger()

CONSENT_CLICK_TIMEOUT_MS = 1_500
CONSENT_POLL_INTERVAL_MS = 250

# Matched by the provider as case-insensitive substrings of the accessible name
CONSENT_ACCEPT_NAMES = ("accept", "agree", "allow all", "allow cookies", "ok", "got it", "continue")
CONSENT_REJECT_NAMES = ("reject", "decline", "deny", "necessary only")

CONSENT_SELECTORS = (
    "button[data-testid*='accept']",
    "button[id*='accept']",
    "button[class*='accept']",
    "button[aria-label*='accept' i]",
    "button[data-testid*='reject']",
    "button[id*='reject']",
    "button[class*='reject']",
)

VISIBLE_BOXES_SCRIPT = """
(elements) => elements
  .map((element) => {
    const rect = element.getBoundingClientRect();
    const style = getComputedStyle(element);
    return {
      width: rect.width,
      height: rect.height,
      visible: rect.width > 0 && rect.height > 0 && style.display !== "none" && style.visibility !== "hidden"
    };
  })
  .filter((entry) => entry.visible)
"""

URL_CONTAINS_SCRIPT = "(needle) => window.location.href.includes(needle)"
TITLE_CONTAINS_SCRIPT = "(needle) => document.title.toLowerCase().includes(String(needle).toLowerCase())"


def css_locator(provider: BrowserProvider, selector: str) -> LocatorHandle:
    return provider.locator(LocatorSpec.css(f"css:{selector}", selector))


# =============================================================================
# Wait conditions
# =============================================================================


def response_predicate(condition: NetworkResponseWait) -> Callable[[ResponseInfo], bool]:
    """Build a matcher requiring every predicate the condition sets."""
    ignore_case = bool(condition.ignore_case)
    flags = re.IGNORECASE if ignore_case else 0
    url_pattern = re.compile(condition.url_matches, flags) if condition.url_matches else None
    body_pattern = re.compile(condition.body_matches, flags) if condition.body_matches else None

    def fold(value: str) -> str:
        return value.lower() if ignore_case else value

    def matches(response: ResponseInfo) -> bool:
        if condition.url_contains and fold(condition.url_contains) not in fold(response.url):
            return False
        if url_pattern and not url_pattern.search(response.url):
            return False
        if condition.method and response.method.upper() != condition.method.upper():
            return False
        if condition.status is not None and response.status != condition.status:
            return False
        if condition.status_min is not None and response.status < condition.status_min:
            return False
        if condition.status_max is not None and response.status > condition.status_max:
            return False

        body = response.body or ""
        if condition.body_includes and fold(condition.body_includes) not in fold(body):
            return False
        if body_pattern and not body_pattern.search(body):
            return False
        return True

    return matches


async def run_wait_condition(provider: BrowserProvider, condition: WaitCondition, timeout_ms: int) -> None:
    match condition:
        case TimeoutWait(ms=ms):
            await provider.wait_for_timeout(ms)
        case SelectorWait(selector=selector, state=state):
            await provider.wait_for_selector(selector, state or "visible", timeout_ms)
        case NetworkIdleWait():
            await provider.wait_for_load_state("networkidle", timeout_ms)
        case NetworkResponseWait():
            include_body = bool(condition.body_includes or condition.body_matches)
            response = await provider.wait_for_response(
                response_predicate(condition),
                timeout_ms,
                include_body=include_body,
            )
            logger.debug("Matched network response", url=response.url, status=response.status)


# =============================================================================
# Assertions
# =============================================================================


def calculate_overlap_ratio(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection area relative to the smaller box's area."""
    overlap_width = max(0.0, min(a.x + a.width, b.x + b.width) - max(a.x, b.x))
    overlap_height = max(0.0, min(a.y + a.height, b.y + b.height) - max(a.y, b.y))
    min_area = min(a.width * a.height, b.width * b.height)
    if min_area <= 0:
        return 0.0
    return (overlap_width * overlap_height) / min_area


async def run_assert_condition(provider: BrowserProvider, condition: AssertCondition, timeout_ms: int) -> None:
    """Raise AssertionFailedError (or a provider timeout) when the condition does not hold."""
    match condition:
        case SelectorAssert(selector=selector, state=state, text_contains=text_contains):
            locator = css_locator(provider, selector)
            await locator.wait_for(state or "visible", timeout_ms)
            if text_contains:
                text = await locator.inner_text(timeout_ms)
                if text_contains not in text:
                    raise AssertionFailedError(
                        f"Assert failed: selector '{selector}' text does not include '{text_contains}'"
                    )

        case SelectorBBoxMinAssert(selector=selector, min_width=min_width, min_height=min_height):
            await css_locator(provider, selector).wait_for("attached", timeout_ms)
            boxes = await provider.evaluate_all(selector, VISIBLE_BOXES_SCRIPT) or []
            passing = sum(
                1 for box in boxes
                if box.get("width", 0) >= min_width and box.get("height", 0) >= min_height
            )
            required = condition.require_count or 1
            if passing < required:
                raise AssertionFailedError(
                    f"Assert failed: selector '{selector}' has {passing} visible nodes meeting "
                    f"min bbox {min_width:g}x{min_height:g} (required {required})"
                )

        case SelectorOverlapMaxAssert(selector_a=selector_a, selector_b=selector_b):
            box_a, box_b = await asyncio.gather(
                css_locator(provider, selector_a).bounding_box(timeout_ms),
                css_locator(provider, selector_b).bounding_box(timeout_ms),
            )
            if box_a is None or box_b is None:
                raise AssertionFailedError(
                    f"Assert failed: unable to get bounding boxes for '{selector_a}' and '{selector_b}'"
                )
            ratio = calculate_overlap_ratio(box_a, box_b)
            if ratio > condition.max_overlap_ratio:
                raise AssertionFailedError(
                    f"Assert failed: overlap ratio {ratio:.3f} exceeds max {condition.max_overlap_ratio:.3f}"
                )

        case UrlContainsAssert(value=value):
            await provider.wait_for_function(URL_CONTAINS_SCRIPT, value, timeout_ms)

        case TitleContainsAssert(value=value):
            await provider.wait_for_function(TITLE_CONTAINS_SCRIPT, value, timeout_ms)


# =============================================================================
# Consent banners
# =============================================================================


async def _is_visible(locator: LocatorHandle) -> bool:
    try:
        return await locator.is_visible()
    except Exception:
        return False


def consent_locators(provider: BrowserProvider, mode: str) -> list[LocatorHandle]:
    """Candidate consent controls in the order they are tried: named buttons and links, then common selectors."""
    names = CONSENT_ACCEPT_NAMES if mode == "accept" else CONSENT_REJECT_NAMES
    locators = []
    for name in names:
        for role in ("button", "link"):
            locators.append(provider.locator(LocatorSpec.by_role(f"consent:{role}:{name}", role, name)))
    locators.extend(css_locator(provider, selector) for selector in CONSENT_SELECTORS)
    return locators


async def handle_consent(
    provider: BrowserProvider,
    mode: str,
    timeout_ms: int,
    require_found: bool = False,
) -> bool:
    """Click the first visible consent control, polling until ``timeout_ms``.

    Returns:
        True when a control was clicked, False when none appeared.

    Raises:
        ConsentNotFoundError: nothing was found and ``require_found`` is set.
    """
    deadline = time.monotonic() + timeout_ms / 1000

    while time.monotonic() < deadline:
        for locator in consent_locators(provider, mode):
            if await _is_visible(locator):
                await locator.click(CONSENT_CLICK_TIMEOUT_MS)
                return True
        await provider.wait_for_timeout(CONSENT_POLL_INTERVAL_MS)

    if require_found:
        raise ConsentNotFoundError(f"No consent control found for mode '{mode}' within {timeout_ms}ms")
    logger.debug("No consent control found", mode=mode, timeout_ms=timeout_ms)
    return False


# =============================================================================
# Interactive pause
# =============================================================================


async def wait_for_enter_or_timeout(timeout_ms: int, stream: Optional[TextIO] = None) -> None:
    """Wait for a line on an interactive stream, or just the timeout when not a TTY."""
    stream = stream or sys.stdin
    timeout_s = timeout_ms / 1000

    if stream is None or not stream.isatty():
        await asyncio.sleep(timeout_s)
        return

    loop = asyncio.get_running_loop()
    line_read: asyncio.Future = loop.create_future()

    def on_readable() -> None:
        line = stream.readline()
        if not line_read.done():
            line_read.set_result(line)

    loop.add_reader(stream.fileno(), on_readable)
    try:
        await asyncio.wait_for(line_read, timeout_s)
    except asyncio.TimeoutError:
        pass
    finally:
        loop.remove_reader(stream.fileno())
