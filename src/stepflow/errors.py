"""
Error taxonomy for the step flow driver.

Every timeout carries the step, field and bound that produced it so a failing
test can tell a slow environment apart from a form that changed shape.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stepflow.models import TransitionOutcome


class StepFlowError(Exception):
    """Base exception for driver errors."""


class DefinitionError(StepFlowError):
    """Raised for an invalid wizard table or an unknown step/field reference."""


class StepOrderError(StepFlowError):
    """Raised when an operation targets a step the session is not on."""


class WaitTimeout(StepFlowError):
    """A bounded wait elapsed before the expected UI state was observed."""

    kind = "wait"

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        field_key: str | None = None,
        timeout_ms: int = 0,
        attempt: int | None = None,
    ) -> None:
        self.step = step
        self.field_key = field_key
        self.timeout_ms = timeout_ms
        self.attempt = attempt
        super().__init__(self._format(message))

    def _format(self, message: str) -> str:
        context = []
        if self.step is not None:
            context.append(f"step={self.step}")
        if self.field_key is not None:
            context.append(f"field={self.field_key}")
        context.append(f"bound={self.timeout_ms}ms")
        if self.attempt is not None:
            context.append(f"attempt={self.attempt}")
        return f"{message} ({', '.join(context)})"


class NavigationTimeout(WaitTimeout):
    """The wizard entry page or its first container never appeared."""

    kind = "navigation"


class StepTransitionTimeout(WaitTimeout):
    """Neither a navigation nor an in-page step change was observed."""

    kind = "step_transition"

    def __init__(
        self,
        message: str,
        *,
        outcome: TransitionOutcome | None = None,
        **context: object,
    ) -> None:
        self.outcome = outcome
        super().__init__(message, **context)  # type: ignore[arg-type]


class FieldReadyTimeout(WaitTimeout):
    """A field never became visible/attached, or its checked state never flipped."""

    kind = "field_ready"


class ConfirmationTimeout(WaitTimeout):
    """
    A written value was not reflected by the live field in time.

    Diagnostic only: the driver records it on the session instead of raising,
    since reformatting or delayed echo of input is normal for the form.
    """

    kind = "confirmation"

    def __init__(
        self,
        message: str,
        *,
        expected: str = "",
        observed: str | None = None,
        **context: object,
    ) -> None:
        self.expected = expected
        self.observed = observed
        super().__init__(message, **context)  # type: ignore[arg-type]
