"""Pytest fixtures for stepflow tests."""

from __future__ import annotations

import asyncio
import re
import tempfile
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from functools import partial
from pathlib import Path

import pytest

from stepflow.checks import ERROR_STATE_SELECTORS
from stepflow.config import TestData
from stepflow.driver import StepFlowDriver
from stepflow.leadform import LeadFormStep
from stepflow.models import (
    BranchSpec,
    ConfirmationSpec,
    FieldKind,
    FieldSpec,
    StepDefinition,
    WizardDefinition,
)
from stepflow.surface import ElementState, FieldValidity, LoadState
from stepflow.waits import WaitPolicy, digits_only

ENTRY_URL = "https://form.test/"

_EMAIL = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


@dataclass
class FakeElement:
    """State of one selector on the fake page."""

    attached: bool = True
    visible: bool = True
    value: str = ""
    checked: bool = False
    text: str = ""
    valid: bool = True
    validation_message: str = ""


class FakeSurface:
    """
    In-memory AutomationSurface.

    Selectors are plain dictionary keys. Waits poll the in-memory state and
    raise TimeoutError when their bound elapses, like the real surface.
    """

    def __init__(self, url: str = "about:blank", poll_s: float = 0.005) -> None:
        self.url = url
        self.poll_s = poll_s
        self.elements: dict[str, FakeElement] = {}
        self.pages: dict[str, Callable[[], None]] = {}
        self.on_click: dict[str, Callable[[], None]] = {}
        self.formatters: dict[str, Callable[[str], str]] = {}
        self.body = ""
        self.load_complete = True
        self.network_idle = True
        self.screenshot_fails = False
        self.blocked: set[str] = set()
        self.action_timeouts: list[int | None] = []
        self.loaded: list[str] = []
        self.clicks: list[tuple[str, bool]] = []
        self.fills: list[tuple[str, str]] = []
        self.screenshots: list[Path] = []

    # Page setup helpers

    def add(self, selector: str, **state: object) -> FakeElement:
        element = self.elements.get(selector)
        if element is None:
            element = self.elements[selector] = FakeElement()
        for name, value in state.items():
            setattr(element, name, value)
        element.attached = True
        return element

    def show(self, selector: str) -> None:
        self.add(selector, visible=True)

    def hide(self, selector: str) -> None:
        if selector in self.elements:
            self.elements[selector].visible = False

    def check(self, selector: str) -> None:
        self.add(selector, checked=True)

    def later(self, delay_s: float, callback: Callable[[], None]) -> None:
        asyncio.get_running_loop().call_later(delay_s, callback)

    def _get(self, selector: str) -> FakeElement | None:
        element = self.elements.get(selector)
        if element is None or not element.attached:
            return None
        return element

    def _is_visible(self, selector: str) -> bool:
        element = self._get(selector)
        return element is not None and element.visible

    def _check_actionable(self, selector: str, timeout_ms: int | None) -> None:
        # Disabled, readonly or covered controls fail actionability checks
        self.action_timeouts.append(timeout_ms)
        if selector in self.blocked:
            raise TimeoutError(f"Action on '{selector}' timed out after {timeout_ms}ms")

    async def _poll(self, check: Callable[[], bool], timeout_ms: int, what: str) -> None:
        deadline = time.monotonic() + timeout_ms / 1000
        while not check():
            if time.monotonic() >= deadline:
                raise TimeoutError(f"{what} not reached within {timeout_ms}ms")
            await asyncio.sleep(self.poll_s)

    # AutomationSurface

    async def load(self, url: str, timeout_ms: int) -> None:
        self.loaded.append(url)
        self.url = url
        render = self.pages.get(url)
        if render is not None:
            render()

    async def current_url(self) -> str:
        return self.url

    async def wait_for_condition(self, predicate: Callable[[], object], timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000
        while not await predicate():
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Condition not met within {timeout_ms}ms")
            await asyncio.sleep(self.poll_s)

    async def wait_for_element_state(self, selector: str, state: ElementState, timeout_ms: int) -> None:
        if state is ElementState.VISIBLE:
            await self._poll(lambda: self._is_visible(selector), timeout_ms, f"'{selector}' visible")
        else:
            await self._poll(lambda: self._get(selector) is not None, timeout_ms, f"'{selector}' attached")

    async def wait_for_load_state(self, state: LoadState, timeout_ms: int) -> None:
        if state is LoadState.NETWORK_IDLE:
            await self._poll(lambda: self.network_idle, timeout_ms, "network idle")
        else:
            await self._poll(lambda: self.load_complete, timeout_ms, f"load state {state}")

    async def click(self, selector: str, *, force: bool = False, timeout_ms: int | None = None) -> None:
        self._check_actionable(selector, timeout_ms)
        await self._poll(
            lambda: self._get(selector) is not None and (force or self._is_visible(selector)),
            timeout_ms or 1000,
            f"'{selector}' clickable",
        )
        self.clicks.append((selector, force))
        handler = self.on_click.get(selector)
        if handler is not None:
            handler()

    async def fill(
        self, selector: str, value: str, *, force: bool = False, timeout_ms: int | None = None
    ) -> None:
        self._check_actionable(selector, timeout_ms)
        element = self._get(selector)
        if element is None:
            raise TimeoutError(f"'{selector}' not attached")
        self.fills.append((selector, value))
        formatter = self.formatters.get(selector)
        element.value = formatter(value) if formatter else value

    async def is_checked(self, selector: str) -> bool:
        element = self._get(selector)
        return element is not None and element.checked

    async def is_visible(self, selector: str) -> bool:
        return self._is_visible(selector)

    async def input_value(self, selector: str) -> str:
        element = self._get(selector)
        return element.value if element else ""

    async def read_text(self, selector: str) -> str:
        if selector == "body":
            return self.body
        element = self._get(selector)
        return element.text if element else ""

    async def count(self, selector: str) -> int:
        return 1 if self._get(selector) is not None else 0

    async def validity(self, selector: str) -> FieldValidity:
        element = self._get(selector)
        if element is None:
            return FieldValidity(valid=True)
        return FieldValidity(valid=element.valid, message=element.validation_message)

    async def screenshot(self, path: Path) -> None:
        if self.screenshot_fails:
            raise RuntimeError("screenshot backend unavailable")
        self.screenshots.append(path)


def format_us_phone(value: str) -> str:
    """Input mask the lead form applies to phone numbers."""
    digits = digits_only(value)[:10]
    if len(digits) < 10:
        return digits
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"


class SimulatedLeadForm:
    """
    Wires a FakeSurface to behave like a multi-step lead form.

    Each advance control moves to the next step after ``delay_s`` when the
    step's required fields hold acceptable values, and does nothing
    otherwise. Steps listed in ``navigate_to`` are reached through a full page
    navigation instead of an in-page swap.
    """

    OUT_OF_AREA_ZIPCODES = ("11111", "12345")

    def __init__(
        self,
        surface: FakeSurface,
        wizard: WizardDefinition,
        *,
        delay_s: float = 0.02,
        prerendered: bool = True,
        navigate_to: tuple[str, ...] = (),
        confirm_with: str = "url",
    ) -> None:
        self.surface = surface
        self.wizard = wizard
        self.delay_s = delay_s
        self.prerendered = prerendered
        self.navigate_to = navigate_to
        self.confirm_with = confirm_with

        surface.pages[wizard.entry_url] = self.render
        for index, definition in enumerate(wizard.steps):
            surface.on_click[definition.advance_selector] = partial(self._advance, index)
            for spec in definition.fields:
                if spec.kind.is_choice:
                    surface.on_click[spec.label_selector or spec.selector] = partial(surface.check, spec.selector)
                elif spec.kind is FieldKind.PHONE:
                    surface.formatters[spec.selector] = format_us_phone

    def render(self) -> None:
        for index, definition in enumerate(self.wizard.steps):
            if index == 0:
                self._show_step(definition)
            elif self.prerendered:
                self._hide_step(definition)
        self.surface.body = "get a free quote"

    def _show_step(self, definition: StepDefinition) -> None:
        self.surface.add(definition.container, visible=True)
        self.surface.add(definition.advance_selector, visible=True)
        for spec in definition.fields:
            if spec.kind.is_choice and spec.label_selector:
                # Custom-styled input hidden behind its label
                self.surface.add(spec.selector, visible=False)
                self.surface.add(spec.label_selector, visible=True)
            else:
                self.surface.add(spec.selector, visible=True)

    def _hide_step(self, definition: StepDefinition) -> None:
        selectors = [definition.container, definition.advance_selector]
        for spec in definition.fields:
            selectors.append(spec.selector)
            if spec.label_selector:
                selectors.append(spec.label_selector)
        for selector in selectors:
            self.surface.add(selector, visible=False)

    def _accepts(self, spec: FieldSpec) -> bool:
        element = self.surface.elements.get(spec.selector)
        if element is None:
            return False
        if spec.kind.is_choice:
            return element.checked
        if spec.key == "zipcode":
            return len(element.value) == 5 and element.value.isdigit()
        if spec.kind is FieldKind.EMAIL:
            return _EMAIL.fullmatch(element.value) is not None
        if spec.kind is FieldKind.PHONE:
            return len(digits_only(element.value)) == 10
        return bool(element.value.strip())

    def _advance(self, index: int) -> None:
        definition = self.wizard.steps[index]
        if not all(self._accepts(spec) for spec in definition.required_fields):
            self.surface.add(ERROR_STATE_SELECTORS, visible=True)
            return

        first_value = self.surface.elements[definition.fields[0].selector].value if definition.fields else ""
        if definition.branches and first_value in self.OUT_OF_AREA_ZIPCODES:
            self.surface.later(self.delay_s, partial(self._branch, definition))
        elif index == len(self.wizard.steps) - 1:
            self.surface.network_idle = False
            self.surface.later(self.delay_s, self._confirm)
        else:
            self.surface.later(self.delay_s, partial(self._move, index))

    def _branch(self, definition: StepDefinition) -> None:
        self._hide_step(definition)
        self.surface.show(definition.branches[0].container)
        self.surface.body = "sorry, unfortunately we don't yet install in your area"

    def _move(self, index: int) -> None:
        self._hide_step(self.wizard.steps[index])
        target = self.wizard.steps[index + 1]
        if target.step in self.navigate_to:
            self.surface.url = f"{self.wizard.entry_url}{target.step}"
            self.surface.load_complete = False
            self.surface.later(self.delay_s, partial(self._finish_load, target))
        else:
            self._show_step(target)

    def _finish_load(self, target: StepDefinition) -> None:
        self.surface.load_complete = True
        self._show_step(target)

    def _confirm(self) -> None:
        if self.confirm_with == "url":
            self.surface.url = f"{self.wizard.entry_url}thankyou"
            # The new page renders its heading a moment after the URL changes
            self.surface.later(self.delay_s, self._show_thanks)
        elif self.confirm_with == "heading":
            self._show_thanks()
        self.surface.network_idle = True

    def _show_thanks(self) -> None:
        self.surface.add(self.wizard.confirmation.heading_selector, visible=True)
        self.surface.body = "thank you for your request"


def build_sample_wizard() -> WizardDefinition:
    """Five-step wizard shaped like the lead form, with plain selectors."""
    return WizardDefinition(
        entry_url=ENTRY_URL,
        steps=(
            StepDefinition(
                step=LeadFormStep.ZIPCODE,
                container="#step-1",
                advance_selector="#next-1",
                fields=(FieldSpec(key="zipcode", selector="#zip"),),
                branches=(BranchSpec(name="out_of_area", container="#sorry"),),
            ),
            StepDefinition(
                step=LeadFormStep.INTEREST,
                container="#step-2",
                advance_selector="#next-2",
                fields=(
                    FieldSpec(
                        key="interest",
                        selector="#interest",
                        kind=FieldKind.CHECKBOX,
                        label_selector="#interest-label",
                    ),
                ),
            ),
            StepDefinition(
                step=LeadFormStep.PROPERTY_TYPE,
                container="#step-3",
                advance_selector="#next-3",
                fields=(
                    FieldSpec(
                        key="property_type",
                        selector="#property",
                        kind=FieldKind.RADIO,
                        label_selector="#property-label",
                    ),
                ),
            ),
            StepDefinition(
                step=LeadFormStep.CONTACT,
                container="#step-4",
                advance_selector="#next-4",
                fields=(
                    FieldSpec(key="name", selector="#name"),
                    FieldSpec(key="email", selector="#email", kind=FieldKind.EMAIL),
                ),
            ),
            StepDefinition(
                step=LeadFormStep.PHONE,
                container="#step-5",
                advance_selector="#submit",
                fields=(FieldSpec(key="phone", selector="#phone", kind=FieldKind.PHONE),),
            ),
        ),
        confirmation=ConfirmationSpec(url_pattern=r"thank", heading_selector="#thanks"),
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test artifacts."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fast_policy() -> WaitPolicy:
    """Wait bounds short enough for in-memory pages."""
    return WaitPolicy(
        open_timeout_ms=500,
        field_ready_timeout_ms=300,
        confirm_timeout_ms=150,
        select_timeout_ms=150,
        transition_timeout_ms=400,
        submit_timeout_ms=500,
        poll_interval_ms=5,
        screenshot_on_timeout=True,
    )


@pytest.fixture
def sample_wizard() -> WizardDefinition:
    return build_sample_wizard()


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def make_driver(
    surface: FakeSurface,
    fast_policy: WaitPolicy,
    temp_dir: Path,
) -> Callable[..., StepFlowDriver]:
    """Factory for a driver over the fake surface, optionally wiring a simulated form."""

    def _make(
        wizard: WizardDefinition | None = None,
        *,
        simulate: bool = True,
        **form_options: object,
    ) -> StepFlowDriver:
        wizard = wizard or build_sample_wizard()
        surface.poll_s = fast_policy.poll_interval_ms / 1000
        if simulate:
            SimulatedLeadForm(surface, wizard, **form_options)  # type: ignore[arg-type]
        return StepFlowDriver(
            surface,
            wizard,
            data=TestData(),
            policy=fast_policy,
            screenshot_dir=temp_dir / "screenshots",
        )

    return _make
