"""
Stepflow.

Resilient driver for multi-step wizard forms and the end-to-end test suite
of a lead-generation form built on it.
"""

__version__ = "1.0.0"

from stepflow.config import RunSettings, TestData
from stepflow.driver import StepFlowDriver
from stepflow.errors import (
    ConfirmationTimeout,
    DefinitionError,
    FieldReadyTimeout,
    NavigationTimeout,
    StepFlowError,
    StepOrderError,
    StepTransitionTimeout,
    WaitTimeout,
)
from stepflow.models import (
    BranchSpec,
    ConfirmationSpec,
    FieldKind,
    FieldSpec,
    StepDefinition,
    TransitionKind,
    TransitionOutcome,
    WizardDefinition,
    WizardSession,
)
from stepflow.surface import AutomationSurface, ElementState, LoadState, PlaywrightSurface
from stepflow.waits import WaitPolicy

__all__ = [
    "AutomationSurface",
    "BranchSpec",
    "ConfirmationSpec",
    "ConfirmationTimeout",
    "DefinitionError",
    "ElementState",
    "FieldKind",
    "FieldReadyTimeout",
    "FieldSpec",
    "LoadState",
    "NavigationTimeout",
    "PlaywrightSurface",
    "RunSettings",
    "StepDefinition",
    "StepFlowDriver",
    "StepFlowError",
    "StepOrderError",
    "StepTransitionTimeout",
    "TestData",
    "TransitionKind",
    "TransitionOutcome",
    "WaitPolicy",
    "WaitTimeout",
    "WizardDefinition",
    "WizardSession",
    "__version__",
]
