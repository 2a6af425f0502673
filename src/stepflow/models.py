"""
Data model for wizard-style forms.

A wizard is an ordered table of step definitions built once and read-only
afterwards; selector strategy lives in the table, not in code. The session is
the only mutable piece and belongs to exactly one test.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from stepflow.config import TestData
from stepflow.errors import ConfirmationTimeout, DefinitionError


class FieldKind(StrEnum):
    """Input kinds the driver knows how to write and confirm."""

    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"  # Formatted; confirmed on digits only
    CHECKBOX = "checkbox"
    RADIO = "radio"

    @property
    def is_choice(self) -> bool:
        return self in (FieldKind.CHECKBOX, FieldKind.RADIO)

    @property
    def is_formatted(self) -> bool:
        return self is FieldKind.PHONE


@dataclass(frozen=True)
class FieldSpec:
    """One input on a step."""

    key: str
    selector: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = True
    label_selector: str | None = None
    """Clickable label for custom-styled checkbox/radio inputs."""


@dataclass(frozen=True)
class BranchSpec:
    """A named early-exit screen a step may lead to instead of the next step."""

    name: str
    container: str


@dataclass(frozen=True)
class StepDefinition:
    """A step tag, its container, its fields and the control that advances it."""

    step: str
    container: str
    advance_selector: str
    fields: tuple[FieldSpec, ...] = ()
    landing: str | None = None
    """Container expected when this step is reached through a full navigation."""
    branches: tuple[BranchSpec, ...] = ()

    def field(self, key: str) -> FieldSpec:
        for spec in self.fields:
            if spec.key == key:
                return spec
        raise DefinitionError(f"Step '{self.step}' has no field '{key}'")

    @property
    def first_field(self) -> FieldSpec | None:
        return self.fields[0] if self.fields else None

    @property
    def required_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.required)


@dataclass(frozen=True)
class ConfirmationSpec:
    """How the terminal confirmation page is recognised."""

    url_pattern: str = r"thank"
    heading_selector: str = "h1:has-text('Thank')"


@dataclass(frozen=True)
class WizardDefinition:
    """
    Ordered, immutable table of steps.

    Step order is the position in ``steps``; the driver only moves forward.
    Field keys are unique across the whole wizard so a session can track
    fills by key alone.
    """

    entry_url: str
    steps: tuple[StepDefinition, ...]
    confirmation: ConfirmationSpec = field(default_factory=ConfirmationSpec)

    def __post_init__(self) -> None:
        if not self.steps:
            raise DefinitionError("Wizard must define at least one step")

        tags = [s.step for s in self.steps]
        duplicates = sorted({t for t in tags if tags.count(t) > 1})
        if duplicates:
            raise DefinitionError(f"Duplicate step tags: {', '.join(duplicates)}")

        keys = [f.key for s in self.steps for f in s.fields]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise DefinitionError(f"Duplicate field keys: {', '.join(duplicates)}")

    @property
    def first(self) -> StepDefinition:
        return self.steps[0]

    @property
    def last(self) -> StepDefinition:
        return self.steps[-1]

    def index_of(self, step: str) -> int:
        for i, definition in enumerate(self.steps):
            if definition.step == step:
                return i
        raise DefinitionError(f"Unknown step '{step}'")

    def definition(self, step: str) -> StepDefinition:
        return self.steps[self.index_of(step)]

    def next_after(self, step: str) -> StepDefinition | None:
        index = self.index_of(step) + 1
        return self.steps[index] if index < len(self.steps) else None


class TransitionKind(StrEnum):
    """Observed result of trying to leave a step."""

    NAVIGATED = "navigated_to_new_page"
    ADVANCED_IN_PAGE = "advanced_in_page"
    BRANCHED = "branched"
    CONFIRMED = "confirmed"
    SETTLED = "settled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class TransitionOutcome:
    """Tagged result of one transition attempt."""

    kind: TransitionKind
    from_step: str
    to_step: str | None = None
    url: str | None = None
    branch: str | None = None
    attempt: int = 0
    elapsed_ms: int = 0

    @property
    def is_confirmation(self) -> bool:
        """True when the terminal page was positively identified."""
        return self.kind in (TransitionKind.NAVIGATED, TransitionKind.CONFIRMED) and self.to_step is None


@dataclass
class WizardSession:
    """
    Runtime state of one wizard run.

    ``filled`` maps a field key to the last value written to it (choice
    fields record ``"checked"``). ``attempts`` only ever grows and is used to
    name diagnostics.
    """

    data: TestData = field(default_factory=TestData)
    current_step: str | None = None
    filled: dict[str, str] = field(default_factory=dict)
    unconfirmed: set[str] = field(default_factory=set)
    diagnostics: list[ConfirmationTimeout] = field(default_factory=list)
    exit_branch: str | None = None
    completed: bool = False
    history: list[TransitionOutcome] = field(default_factory=list)
    attempts: int = 0

    @property
    def is_open(self) -> bool:
        return self.current_step is not None

    def restart(self, first_step: str) -> None:
        self.current_step = first_step
        self.filled.clear()
        self.unconfirmed.clear()
        self.exit_branch = None
        self.completed = False

    def next_attempt(self) -> int:
        self.attempts += 1
        return self.attempts

    def record_fill(self, key: str, value: str, confirmed: bool = True) -> None:
        self.filled[key] = value
        if confirmed:
            self.unconfirmed.discard(key)
        else:
            self.unconfirmed.add(key)

    def record_outcome(self, outcome: TransitionOutcome) -> None:
        self.history.append(outcome)
