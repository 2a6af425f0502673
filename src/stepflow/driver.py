"""
Step flow driver for wizard-style forms.

Drives one WizardSession through a WizardDefinition in order:
- open() loads the entry page and waits for the first step container
- fill()/select_option() write inputs and confirm the UI reflected them
- advance() races a full navigation against an in-page step swap
- submit_final() races the confirmation signals of the last step

Every wait is a single bounded poll; nothing is retried. Timeouts surface as
typed errors carrying the step, field and bound.
"""

from __future__ import annotations

import asyncio
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

import structlog

from stepflow.config import TestData
from stepflow.errors import (
    ConfirmationTimeout,
    DefinitionError,
    FieldReadyTimeout,
    NavigationTimeout,
    StepOrderError,
    StepTransitionTimeout,
)
from stepflow.models import (
    FieldSpec,
    StepDefinition,
    TransitionKind,
    TransitionOutcome,
    WizardDefinition,
    WizardSession,
)
from stepflow.surface import AutomationSurface, ElementState, LoadState
from stepflow.waits import Deadline, WaitPolicy, cancel_pending, first_completed, values_match

logger = structlog.get_logger(__name__)

NAVIGATION = "navigation"
IN_PAGE = "in_page"
BRANCH_PREFIX = "branch:"
CONFIRMATION_URL = "confirmation_url"
CONFIRMATION_HEADING = "confirmation_heading"
NETWORK_IDLE = "network_idle"


class StepFlowDriver:
    """
    Advances a wizard session step by step over an automation surface.

    The step table is data: one driver serves any wizard whose steps are
    described by a WizardDefinition.
    """

    def __init__(
        self,
        surface: AutomationSurface,
        wizard: WizardDefinition,
        data: TestData | None = None,
        policy: WaitPolicy | None = None,
        screenshot_dir: str | Path = "screenshots",
    ) -> None:
        self._surface = surface
        self._wizard = wizard
        self._policy = policy or WaitPolicy()
        self._screenshot_dir = Path(screenshot_dir)
        self._session = WizardSession(data=data or TestData())
        self._log = logger.bind(component="step_flow_driver")

    @property
    def session(self) -> WizardSession:
        return self._session

    @property
    def wizard(self) -> WizardDefinition:
        return self._wizard

    @property
    def surface(self) -> AutomationSurface:
        return self._surface

    @property
    def policy(self) -> WaitPolicy:
        return self._policy

    @property
    def current_step(self) -> str | None:
        return self._session.current_step

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Load the entry page and wait until the first step container is attached."""
        first = self._wizard.first
        deadline = Deadline(self._policy.open_timeout_ms)
        self._log.info("Opening wizard", url=self._wizard.entry_url)

        try:
            await self._surface.load(self._wizard.entry_url, deadline.remaining_ms)
            await self._surface.wait_for_element_state(
                first.container, ElementState.ATTACHED, deadline.remaining_ms
            )
        except TimeoutError as e:
            raise NavigationTimeout(
                f"Wizard entry {self._wizard.entry_url} did not show its first step",
                step=first.step,
                timeout_ms=deadline.timeout_ms,
            ) from e

        self._session.restart(first.step)
        self._log.debug("Wizard opened", step=first.step, elapsed_ms=deadline.elapsed_ms)

    async def fill(self, step: str, field_key: str, value: str) -> bool:
        """
        Write ``value`` into a field and confirm the UI reflects it.

        Returns True when the write was confirmed. An unconfirmed write is not
        an error: it is recorded on the session as a ConfirmationTimeout
        diagnostic and logged.
        """
        self._require_fillable(step)
        spec = self._wizard.definition(step).field(field_key)
        if spec.kind.is_choice:
            raise DefinitionError(f"Field '{field_key}' is a {spec.kind}; use select_option()")

        await self._wait_field(step, spec, ElementState.VISIBLE)
        timeout_ms = self._policy.field_ready_timeout_ms
        try:
            await self._surface.fill(spec.selector, value, timeout_ms=timeout_ms)
        except TimeoutError as e:
            raise FieldReadyTimeout(
                "Field did not accept input",
                step=step,
                field_key=field_key,
                timeout_ms=timeout_ms,
            ) from e

        async def reflected() -> bool:
            observed = await self._surface.input_value(spec.selector)
            return values_match(value, observed, formatted=spec.kind.is_formatted)

        try:
            await self._surface.wait_for_condition(reflected, self._policy.confirm_timeout_ms)
        except TimeoutError:
            observed = await self._surface.input_value(spec.selector)
            diagnostic = ConfirmationTimeout(
                "Field value not confirmed",
                expected=value,
                observed=observed,
                step=step,
                field_key=field_key,
                timeout_ms=self._policy.confirm_timeout_ms,
            )
            self._session.diagnostics.append(diagnostic)
            self._session.record_fill(field_key, value, confirmed=False)
            self._log.warning(
                "Fill not confirmed",
                step=step,
                field=field_key,
                expected=value,
                observed=observed,
            )
            return False

        self._session.record_fill(field_key, value)
        self._log.debug("Field filled", step=step, field=field_key)
        return True

    async def select_option(self, step: str, field_key: str) -> bool:
        """
        Check a checkbox or radio field.

        Returns False without clicking when the control is already checked.
        """
        self._require_fillable(step)
        spec = self._wizard.definition(step).field(field_key)
        if not spec.kind.is_choice:
            raise DefinitionError(f"Field '{field_key}' is a {spec.kind}; use fill()")

        await self._wait_field(step, spec, ElementState.ATTACHED)

        if await self._surface.is_checked(spec.selector):
            self._log.debug("Option already selected", step=step, field=field_key)
            self._session.record_fill(field_key, "checked")
            return False

        timeout_ms = self._policy.select_timeout_ms
        try:
            if spec.label_selector and await self._surface.is_visible(spec.label_selector):
                await self._surface.click(spec.label_selector, timeout_ms=timeout_ms)
            elif await self._surface.is_visible(spec.selector):
                await self._surface.click(spec.selector, timeout_ms=timeout_ms)
            else:
                # Custom-styled inputs are attached but hidden behind their label
                await self._surface.click(spec.selector, force=True, timeout_ms=timeout_ms)
        except TimeoutError as e:
            raise FieldReadyTimeout(
                "Option control not clickable",
                step=step,
                field_key=field_key,
                timeout_ms=timeout_ms,
            ) from e

        async def checked() -> bool:
            return await self._surface.is_checked(spec.selector)

        try:
            await self._surface.wait_for_condition(checked, timeout_ms)
        except TimeoutError as e:
            raise FieldReadyTimeout(
                "Checked state did not change after click",
                step=step,
                field_key=field_key,
                timeout_ms=timeout_ms,
            ) from e

        self._session.record_fill(field_key, "checked")
        self._log.debug("Option selected", step=step, field=field_key)
        return True

    async def advance(self, step: str | None = None) -> TransitionOutcome:
        """
        Leave ``step`` (the current step by default) for the next one.

        Races a URL change against the next container appearing (and any
        declared branch screens). The session moves to the next step only once
        that step is observably ready.
        """
        definition = self._require_current(step)
        target = self._wizard.next_after(definition.step)
        if target is None:
            raise StepOrderError(f"'{definition.step}' is the last step; use submit_final()")

        attempt = self._session.next_attempt()
        deadline = Deadline(self._policy.transition_timeout_ms)
        url_before = await self._surface.current_url()

        # Pre-rendered hidden steps are already attached; only visibility tells them apart
        arrival = ElementState.ATTACHED
        if await self._surface.count(target.container) > 0:
            arrival = ElementState.VISIBLE

        self._log.info(
            "Advancing step",
            step=definition.step,
            target=target.step,
            attempt=attempt,
            arrival=arrival,
        )

        waiters = self._start_transition_waiters(definition, target, url_before, arrival, deadline)
        try:
            await self._click_advance(definition, deadline, attempt)
            winner = await first_completed(waiters, deadline)
        finally:
            await cancel_pending(waiters)

        if winner is None:
            await self._transition_timed_out(definition, deadline, attempt, "No navigation or step change observed")

        if winner == NAVIGATION:
            outcome = await self._settle_navigation(definition, target, deadline, attempt)
        elif winner == IN_PAGE:
            outcome = await self._settle_in_page(definition, target, deadline, attempt)
        else:
            branch = winner.removeprefix(BRANCH_PREFIX)
            self._session.exit_branch = branch
            outcome = TransitionOutcome(
                kind=TransitionKind.BRANCHED,
                from_step=definition.step,
                branch=branch,
                url=await self._surface.current_url(),
                attempt=attempt,
                elapsed_ms=deadline.elapsed_ms,
            )

        self._session.record_outcome(outcome)
        self._log.info(
            "Step transition complete",
            step=definition.step,
            outcome=outcome.kind,
            current=self._session.current_step,
            elapsed_ms=outcome.elapsed_ms,
        )
        return outcome

    async def submit_final(self) -> TransitionOutcome:
        """
        Submit the last step and wait for the confirmation page.

        Resolves on the first of: URL matching the confirmation pattern, the
        confirmation heading becoming visible, or the network going idle. A
        network-idle finish without confirmation evidence is reported as
        SETTLED for the caller to assert on.
        """
        definition = self._require_current(None)
        if definition.step != self._wizard.last.step:
            raise StepOrderError(f"'{definition.step}' is not the last step; use advance()")

        confirmation = self._wizard.confirmation
        pattern = re.compile(confirmation.url_pattern, re.IGNORECASE)
        attempt = self._session.next_attempt()
        deadline = Deadline(self._policy.submit_timeout_ms)

        async def url_confirms() -> bool:
            return bool(pattern.search(await self._surface.current_url()))

        self._log.info("Submitting final step", step=definition.step, attempt=attempt)

        waiters: dict[str, asyncio.Task[object]] = {
            CONFIRMATION_URL: asyncio.create_task(
                self._surface.wait_for_condition(url_confirms, deadline.remaining_ms)
            ),
            CONFIRMATION_HEADING: asyncio.create_task(
                self._surface.wait_for_element_state(
                    confirmation.heading_selector, ElementState.VISIBLE, deadline.remaining_ms
                )
            ),
        }
        try:
            await self._click_advance(definition, deadline, attempt)
            # Started after the click: the page is usually idle before it
            waiters[NETWORK_IDLE] = asyncio.create_task(
                self._surface.wait_for_load_state(LoadState.NETWORK_IDLE, deadline.remaining_ms)
            )
            winner = await first_completed(waiters, deadline)
        finally:
            await cancel_pending(waiters)

        if winner is None:
            await self._transition_timed_out(definition, deadline, attempt, "Final submission produced no response")

        url = await self._surface.current_url()
        if winner == CONFIRMATION_URL or (winner == NETWORK_IDLE and pattern.search(url)):
            kind = TransitionKind.NAVIGATED
        elif winner == CONFIRMATION_HEADING or await self._surface.is_visible(confirmation.heading_selector):
            kind = TransitionKind.CONFIRMED
        else:
            kind = TransitionKind.SETTLED

        outcome = TransitionOutcome(
            kind=kind,
            from_step=definition.step,
            url=url,
            attempt=attempt,
            elapsed_ms=deadline.elapsed_ms,
        )
        if outcome.is_confirmation:
            self._session.completed = True
        self._session.record_outcome(outcome)
        self._log.info("Final submission resolved", outcome=kind, url=url, elapsed_ms=outcome.elapsed_ms)
        return outcome

    async def screenshot(self, label: str) -> Path:
        """Save a full-page screenshot named ``{label}-{timestamp}.png``."""
        self._screenshot_dir.mkdir(parents=True, exist_ok=True)
        stamp = int(datetime.now(UTC).timestamp() * 1000)
        path = self._screenshot_dir / f"{label}-{stamp}.png"
        await self._surface.screenshot(path)
        return path

    # ------------------------------------------------------------------
    # Transition internals
    # ------------------------------------------------------------------

    def _start_transition_waiters(
        self,
        definition: StepDefinition,
        target: StepDefinition,
        url_before: str,
        arrival: ElementState,
        deadline: Deadline,
    ) -> dict[str, asyncio.Task[object]]:
        async def url_changed() -> bool:
            return await self._surface.current_url() != url_before

        waiters: dict[str, asyncio.Task[object]] = {
            NAVIGATION: asyncio.create_task(
                self._surface.wait_for_condition(url_changed, deadline.remaining_ms)
            ),
            IN_PAGE: asyncio.create_task(
                self._surface.wait_for_element_state(target.container, arrival, deadline.remaining_ms)
            ),
        }
        for branch in definition.branches:
            waiters[f"{BRANCH_PREFIX}{branch.name}"] = asyncio.create_task(
                self._surface.wait_for_element_state(
                    branch.container, ElementState.VISIBLE, deadline.remaining_ms
                )
            )
        return waiters

    async def _click_advance(self, definition: StepDefinition, deadline: Deadline, attempt: int) -> None:
        try:
            await self._surface.wait_for_element_state(
                definition.advance_selector, ElementState.VISIBLE, deadline.remaining_ms
            )
            await self._surface.click(definition.advance_selector, timeout_ms=deadline.remaining_ms)
        except TimeoutError as e:
            await self._transition_timed_out(definition, deadline, attempt, "Advance control not clickable", e)

    async def _settle_navigation(
        self,
        definition: StepDefinition,
        target: StepDefinition,
        deadline: Deadline,
        attempt: int,
    ) -> TransitionOutcome:
        landing = target.landing or self._wizard.first.container
        try:
            await self._surface.wait_for_load_state(LoadState.LOAD, deadline.remaining_ms)
            await self._surface.wait_for_element_state(landing, ElementState.ATTACHED, deadline.remaining_ms)
        except TimeoutError as e:
            await self._transition_timed_out(definition, deadline, attempt, "Navigated page never showed its form", e)

        self._session.current_step = target.step
        return TransitionOutcome(
            kind=TransitionKind.NAVIGATED,
            from_step=definition.step,
            to_step=target.step,
            url=await self._surface.current_url(),
            attempt=attempt,
            elapsed_ms=deadline.elapsed_ms,
        )

    async def _settle_in_page(
        self,
        definition: StepDefinition,
        target: StepDefinition,
        deadline: Deadline,
        attempt: int,
    ) -> TransitionOutcome:
        try:
            await self._surface.wait_for_element_state(target.container, ElementState.VISIBLE, deadline.remaining_ms)
            if target.first_field is not None:
                await self._surface.wait_for_element_state(
                    target.first_field.selector, ElementState.ATTACHED, deadline.remaining_ms
                )
        except TimeoutError as e:
            await self._transition_timed_out(definition, deadline, attempt, "Next step never became interactive", e)

        self._session.current_step = target.step
        return TransitionOutcome(
            kind=TransitionKind.ADVANCED_IN_PAGE,
            from_step=definition.step,
            to_step=target.step,
            attempt=attempt,
            elapsed_ms=deadline.elapsed_ms,
        )

    async def _transition_timed_out(
        self,
        definition: StepDefinition,
        deadline: Deadline,
        attempt: int,
        reason: str,
        cause: BaseException | None = None,
    ) -> NoReturn:
        outcome = TransitionOutcome(
            kind=TransitionKind.TIMED_OUT,
            from_step=definition.step,
            attempt=attempt,
            elapsed_ms=deadline.elapsed_ms,
        )
        self._session.record_outcome(outcome)
        self._log.warning("Step transition timed out", step=definition.step, reason=reason, attempt=attempt)

        if self._policy.screenshot_on_timeout:
            try:
                await self.screenshot(f"{definition.step}-transition-timeout-{attempt}")
            except Exception as e:
                self._log.warning("Failed to capture timeout screenshot", error=str(e))

        raise StepTransitionTimeout(
            reason,
            outcome=outcome,
            step=definition.step,
            timeout_ms=deadline.timeout_ms,
            attempt=attempt,
        ) from cause

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _require_open(self) -> str:
        if self._session.exit_branch is not None:
            raise StepOrderError(
                f"Wizard exited through branch '{self._session.exit_branch}'; call open() to restart"
            )
        if self._session.completed:
            raise StepOrderError("Wizard already submitted; call open() to restart")
        if self._session.current_step is None:
            raise StepOrderError("Wizard not opened; call open() first")
        return self._session.current_step

    def _require_current(self, step: str | None) -> StepDefinition:
        current = self._require_open()
        if step is not None and step != current:
            self._wizard.index_of(step)
            raise StepOrderError(f"Cannot advance '{step}' while on '{current}'")
        return self._wizard.definition(current)

    def _require_fillable(self, step: str) -> None:
        current = self._require_open()
        if self._wizard.index_of(step) < self._wizard.index_of(current):
            raise StepOrderError(f"Step '{step}' was already exited (current: '{current}')")

    async def _wait_field(self, step: str, spec: FieldSpec, state: ElementState) -> None:
        try:
            await self._surface.wait_for_element_state(
                spec.selector, state, self._policy.field_ready_timeout_ms
            )
        except TimeoutError as e:
            raise FieldReadyTimeout(
                f"Field not {state}",
                step=step,
                field_key=spec.key,
                timeout_ms=self._policy.field_ready_timeout_ms,
            ) from e
