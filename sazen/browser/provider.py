"""Browser automation provider.

The session engine drives the browser only through BrowserProvider, so the
action pipeline, snapshotting and replay can run against any backend that
implements these primitives. PlaywrightProvider is the production backend.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from ..config import SessionOptions
from ..execution.resolver import LocatorSpec
from ..snapshot.models import BoundingBox
from .observer import BrowserObserver
from .routing import MockRouter

logger = structlog.get_logger()


@dataclass(frozen=True)
class ResponseInfo:
    """The parts of a network response a wait condition can match on."""
    method: str
    url: str
    status: int
    body: Optional[str] = None


class LocatorHandle(ABC):
    """First element matching a LocatorSpec."""

    @abstractmethod
    async def click(self, timeout_ms: int) -> None:
        pass

    @abstractmethod
    async def fill(self, value: str, timeout_ms: int) -> None:
        pass

    @abstractmethod
    async def select_option(self, value: str, timeout_ms: int) -> None:
        pass

    @abstractmethod
    async def bounding_box(self, timeout_ms: int) -> Optional[BoundingBox]:
        pass

    @abstractmethod
    async def is_visible(self) -> bool:
        pass

    @abstractmethod
    async def wait_for(self, state: str, timeout_ms: int) -> None:
        pass

    @abstractmethod
    async def inner_text(self, timeout_ms: int) -> str:
        pass


class BrowserProvider(ABC):
    """Abstract browser backend owning one context and one page."""

    @abstractmethod
    async def start(self, options: SessionOptions) -> None:
        """Launch the browser and open a context (preloading storage state if set)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    async def title(self) -> str:
        pass

    # Navigation & input

    @abstractmethod
    async def navigate(self, url: str, wait_until: str, timeout_ms: int) -> None:
        pass

    @abstractmethod
    def locator(self, spec: LocatorSpec) -> LocatorHandle:
        pass

    @abstractmethod
    async def press(self, key: str) -> None:
        pass

    @abstractmethod
    async def set_viewport(self, width: int, height: int) -> None:
        pass

    # Scripts

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run a read-only page function and return its JSON-serializable result."""
        pass

    @abstractmethod
    async def evaluate_all(self, selector: str, script: str) -> Any:
        """Run a page function over every element matching ``selector``."""
        pass

    # Waits

    @abstractmethod
    async def wait_for_timeout(self, ms: int) -> None:
        pass

    @abstractmethod
    async def wait_for_load_state(self, state: str, timeout_ms: int) -> None:
        pass

    @abstractmethod
    async def wait_for_selector(self, selector: str, state: str, timeout_ms: int) -> None:
        pass

    @abstractmethod
    async def wait_for_function(self, script: str, arg: Any, timeout_ms: int) -> None:
        pass

    @abstractmethod
    async def wait_for_response(
        self,
        matches: Callable[[ResponseInfo], bool],
        timeout_ms: int,
        include_body: bool = False,
    ) -> ResponseInfo:
        pass

    # Artifacts & state

    @abstractmethod
    async def screenshot(self, path: str, full_page: bool) -> None:
        pass

    @abstractmethod
    async def storage_state(self, path: str) -> None:
        """Export cookies and local storage to ``path``."""
        pass

    # Context hooks

    @abstractmethod
    async def add_init_script(self, script: str) -> None:
        """Register a script that runs in every new document of the context."""
        pass

    @abstractmethod
    async def emulate_reduced_motion(self) -> None:
        pass

    @abstractmethod
    async def expose_binding(self, name: str, callback: Callable[..., Any]) -> None:
        pass

    @abstractmethod
    async def install_router(self, router: MockRouter) -> None:
        """Route every request through ``router``; unmatched requests continue."""
        pass

    @abstractmethod
    def attach_observer(self, observer: BrowserObserver) -> None:
        """Feed console, page error and network events into ``observer``."""
        pass

    async def __aenter__(self) -> "BrowserProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# =============================================================================
# Playwright backend
# =============================================================================


class PlaywrightLocatorHandle(LocatorHandle):
    def __init__(self, locator):
        self._locator = locator

    async def click(self, timeout_ms: int) -> None:
        await self._locator.click(timeout=timeout_ms)

    async def fill(self, value: str, timeout_ms: int) -> None:
        await self._locator.fill(value, timeout=timeout_ms)

    async def select_option(self, value: str, timeout_ms: int) -> None:
        await self._locator.select_option(value, timeout=timeout_ms)

    async def bounding_box(self, timeout_ms: int) -> Optional[BoundingBox]:
        box = await self._locator.bounding_box(timeout=timeout_ms)
        return BoundingBox.from_dict(box) if box else None

    async def is_visible(self) -> bool:
        return await self._locator.is_visible()

    async def wait_for(self, state: str, timeout_ms: int) -> None:
        await self._locator.wait_for(state=state, timeout=timeout_ms)

    async def inner_text(self, timeout_ms: int) -> str:
        return await self._locator.inner_text(timeout=timeout_ms)


class PlaywrightProvider(BrowserProvider):
    """Chromium via Playwright's async API."""

    def __init__(self):
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._router_installed = False
        self.log = logger.bind(component="browser")

    async def start(self, options: SessionOptions) -> None:
        from playwright.async_api import async_playwright

        self.log.info("Starting browser", headed=options.headed, slow_mo_ms=options.slow_mo_ms)

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=not options.headed,
            slow_mo=options.slow_mo_ms,
        )
        self._context = await self._browser.new_context(
            viewport={
                "width": options.viewport_width,
                "height": options.viewport_height,
            },
            storage_state=options.storage_state_path,
        )
        self._page = await self._context.new_page()

    async def close(self) -> None:
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self._page = None
        self.log.info("Browser stopped")

    @property
    def page(self):
        if self._page is None:
            raise RuntimeError("Browser not started")
        return self._page

    @property
    def context(self):
        if self._context is None:
            raise RuntimeError("Browser not started")
        return self._context

    @property
    def url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        return await self.page.title()

    async def navigate(self, url: str, wait_until: str, timeout_ms: int) -> None:
        await self.page.goto(url, wait_until=wait_until, timeout=timeout_ms)

    def locator(self, spec: LocatorSpec) -> LocatorHandle:
        match spec.strategy:
            case "test_id":
                locator = self.page.get_by_test_id(spec.value)
            case "role":
                if spec.exact is None:
                    locator = self.page.get_by_role(spec.role, name=spec.name)
                else:
                    locator = self.page.get_by_role(spec.role, name=spec.name, exact=spec.exact)
            case _:
                locator = self.page.locator(spec.value)
        return PlaywrightLocatorHandle(locator.first)

    async def press(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def set_viewport(self, width: int, height: int) -> None:
        await self.page.set_viewport_size({"width": width, "height": height})

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def evaluate_all(self, selector: str, script: str) -> Any:
        return await self.page.locator(selector).evaluate_all(script)

    async def wait_for_timeout(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def wait_for_load_state(self, state: str, timeout_ms: int) -> None:
        await self.page.wait_for_load_state(state, timeout=timeout_ms)

    async def wait_for_selector(self, selector: str, state: str, timeout_ms: int) -> None:
        await self.page.wait_for_selector(selector, state=state, timeout=timeout_ms)

    async def wait_for_function(self, script: str, arg: Any, timeout_ms: int) -> None:
        await self.page.wait_for_function(script, arg=arg, timeout=timeout_ms)

    async def wait_for_response(
        self,
        matches: Callable[[ResponseInfo], bool],
        timeout_ms: int,
        include_body: bool = False,
    ) -> ResponseInfo:
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            remaining_ms = max(1, int((deadline - time.monotonic()) * 1000))
            response = await self.page.wait_for_event("response", timeout=remaining_ms)
            body = None
            if include_body:
                try:
                    body = await response.text()
                except Exception as e:
                    self.log.debug("Response body unavailable", url=response.url, error=str(e))
                    body = ""
            info = ResponseInfo(
                method=response.request.method,
                url=response.url,
                status=response.status,
                body=body,
            )
            if matches(info):
                return info

    async def screenshot(self, path: str, full_page: bool) -> None:
        await self.page.screenshot(path=path, full_page=full_page)

    async def storage_state(self, path: str) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        await self.context.storage_state(path=path)

    async def add_init_script(self, script: str) -> None:
        await self.context.add_init_script(script=script)

    async def emulate_reduced_motion(self) -> None:
        await self.page.emulate_media(reduced_motion="reduce")

    async def expose_binding(self, name: str, callback: Callable[..., Any]) -> None:
        await self.context.expose_binding(name, callback)

    async def install_router(self, router: MockRouter) -> None:
        if self._router_installed:
            return

        async def handle(route) -> None:
            request = route.request
            response = router.match(request.method, request.url)
            if response is None:
                await route.continue_()
                return
            await route.fulfill(status=response.status, headers=response.headers, body=response.body)

        await self.context.route("**/*", handle)
        self._router_installed = True

    def attach_observer(self, observer: BrowserObserver) -> None:
        self.page.on(
            "console",
            lambda message: observer.on_console(message.type, message.text, message.location),
        )
        self.page.on("pageerror", lambda error: observer.on_page_error(error.message, error.stack))
        self.context.on(
            "request",
            lambda request: observer.on_request(request.method, request.url, request.resource_type),
        )
        self.context.on(
            "response",
            lambda response: observer.on_response(
                response.request.method,
                response.url,
                response.request.resource_type,
                response.status,
                response.status_text,
            ),
        )
        self.context.on(
            "requestfailed",
            lambda request: observer.on_request_failed(
                request.method, request.url, request.resource_type, request.failure
            ),
        )
