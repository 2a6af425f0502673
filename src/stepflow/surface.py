"""
Browser automation surface consumed by the driver.

The driver only talks to :class:`AutomationSurface`. Every wait on the surface
is a single bounded poll that raises the builtin ``TimeoutError`` when the
bound elapses. :class:`PlaywrightSurface` implements it on a Playwright page.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

if TYPE_CHECKING:
    from playwright.async_api import Locator, Page

logger = structlog.get_logger(__name__)

Predicate = Callable[[], Awaitable[bool]]


class ElementState(StrEnum):
    """Element states the driver waits for."""

    ATTACHED = "attached"  # In the render tree, maybe hidden
    VISIBLE = "visible"


class LoadState(StrEnum):
    LOAD = "load"
    DOM_CONTENT_LOADED = "domcontentloaded"
    NETWORK_IDLE = "networkidle"


@dataclass(frozen=True)
class FieldValidity:
    """Native constraint-validation state of an input."""

    valid: bool
    message: str = ""


@runtime_checkable
class AutomationSurface(Protocol):
    """Operations the driver and the page checks need from a browser."""

    async def load(self, url: str, timeout_ms: int) -> None: ...

    async def current_url(self) -> str: ...

    async def wait_for_condition(self, predicate: Predicate, timeout_ms: int) -> None: ...

    async def wait_for_element_state(
        self, selector: str, state: ElementState, timeout_ms: int
    ) -> None: ...

    async def wait_for_load_state(self, state: LoadState, timeout_ms: int) -> None: ...

    async def click(self, selector: str, *, force: bool = False, timeout_ms: int | None = None) -> None: ...

    async def fill(
        self, selector: str, value: str, *, force: bool = False, timeout_ms: int | None = None
    ) -> None: ...

    async def is_checked(self, selector: str) -> bool: ...

    async def is_visible(self, selector: str) -> bool: ...

    async def input_value(self, selector: str) -> str: ...

    async def read_text(self, selector: str) -> str: ...

    async def count(self, selector: str) -> int: ...

    async def validity(self, selector: str) -> FieldValidity: ...

    async def screenshot(self, path: Path) -> None: ...


class PlaywrightSurface:
    """
    AutomationSurface over a Playwright async page.

    Selectors resolve to their first match, so comma-separated fallback
    selectors behave like an ordered list of strategies.
    """

    def __init__(
        self,
        page: Page,
        action_timeout_ms: int = 30000,
        poll_interval_ms: int = 100,
    ) -> None:
        self._page = page
        self._action_timeout = action_timeout_ms
        self._poll_interval = poll_interval_ms / 1000
        self._log = logger.bind(component="playwright_surface")

    @property
    def page(self) -> Page:
        return self._page

    @property
    def poll_interval_ms(self) -> int:
        return round(self._poll_interval * 1000)

    def _locate(self, selector: str) -> Locator:
        return self._page.locator(selector).first

    async def load(self, url: str, timeout_ms: int) -> None:
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"Loading {url} timed out") from e

    async def current_url(self) -> str:
        return self._page.url

    async def wait_for_condition(self, predicate: Predicate, timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            if await predicate():
                return
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Condition not met within {timeout_ms}ms")
            await asyncio.sleep(self._poll_interval)

    async def wait_for_element_state(
        self, selector: str, state: ElementState, timeout_ms: int
    ) -> None:
        try:
            await self._locate(selector).wait_for(state=state.value, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"'{selector}' not {state} within {timeout_ms}ms") from e

    async def wait_for_load_state(self, state: LoadState, timeout_ms: int) -> None:
        try:
            await self._page.wait_for_load_state(state.value, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"Load state '{state}' not reached within {timeout_ms}ms") from e

    async def click(self, selector: str, *, force: bool = False, timeout_ms: int | None = None) -> None:
        try:
            await self._locate(selector).click(force=force, timeout=timeout_ms or self._action_timeout)
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"Click on '{selector}' timed out") from e

    async def fill(
        self, selector: str, value: str, *, force: bool = False, timeout_ms: int | None = None
    ) -> None:
        try:
            await self._locate(selector).fill(value, force=force, timeout=timeout_ms or self._action_timeout)
        except PlaywrightTimeoutError as e:
            raise TimeoutError(f"Fill of '{selector}' timed out") from e

    async def is_checked(self, selector: str) -> bool:
        if await self._page.locator(selector).count() == 0:
            return False
        return await self._locate(selector).is_checked()

    async def is_visible(self, selector: str) -> bool:
        return await self._locate(selector).is_visible()

    async def input_value(self, selector: str) -> str:
        return await self._locate(selector).input_value(timeout=self._action_timeout)

    async def read_text(self, selector: str) -> str:
        if await self._page.locator(selector).count() == 0:
            return ""
        return await self._locate(selector).text_content() or ""

    async def count(self, selector: str) -> int:
        return await self._page.locator(selector).count()

    async def validity(self, selector: str) -> FieldValidity:
        if await self._page.locator(selector).count() == 0:
            return FieldValidity(valid=True)
        state = await self._locate(selector).evaluate(
            "el => ({valid: el.checkValidity ? el.checkValidity() : true,"
            " message: el.validationMessage || ''})"
        )
        return FieldValidity(valid=bool(state["valid"]), message=state["message"])

    async def screenshot(self, path: Path) -> None:
        await self._page.screenshot(path=str(path), full_page=True)
        self._log.debug("Screenshot saved", path=str(path))
