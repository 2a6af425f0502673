"""
Read-only page inspections used by test assertions.

These never drive the form; they only look at what the surface currently
shows so a test can decide whether the form accepted or rejected input.
"""

from __future__ import annotations

import re

import structlog

from stepflow.models import ConfirmationSpec, WizardDefinition
from stepflow.surface import AutomationSurface

logger = structlog.get_logger(__name__)

ERROR_STATE_SELECTORS = '[class*="error"], [class*="invalid"], [aria-invalid="true"]'
ERROR_TEXT_SELECTORS = "text=/required/i, text=/mandatory/i, text=/please/i, text=/error/i"
HELP_TEXT_SELECTORS = '[class*="help"], [class*="message"], [class*="validation"], [class*="feedback"]'

DUPLICATE_EMAIL_PHRASES: tuple[str, ...] = ("already", "duplicate", "exists", "taken", "registered")
CONFIRMATION_TEXT = "thank"


async def body_text(surface: AutomationSurface) -> str:
    return (await surface.read_text("body")).lower()


async def has_validation_errors(surface: AutomationSurface) -> bool:
    """Any error styling, error wording or validation/help message on the page."""
    counts = {
        "error_state": await surface.count(ERROR_STATE_SELECTORS),
        "error_text": await surface.count(ERROR_TEXT_SELECTORS),
        "help_text": await surface.count(HELP_TEXT_SELECTORS),
    }
    logger.debug("Validation indicators", **counts)
    return any(counts.values())


async def is_confirmation_page(
    surface: AutomationSurface,
    confirmation: ConfirmationSpec | None = None,
) -> bool:
    """URL or body text identifies the thank-you page."""
    pattern = (confirmation or ConfirmationSpec()).url_pattern
    url = await surface.current_url()
    if re.search(pattern, url, re.IGNORECASE):
        return True
    return CONFIRMATION_TEXT in await body_text(surface)


async def is_on_first_step(surface: AutomationSurface, wizard: WizardDefinition) -> bool:
    """The form did not progress: first container still showing, or still on the entry URL."""
    url = (await surface.current_url()).rstrip("/")
    if url == wizard.entry_url.rstrip("/"):
        return True
    return await surface.is_visible(wizard.first.container)


async def is_step_showing(surface: AutomationSurface, wizard: WizardDefinition, step: str) -> bool:
    return await surface.is_visible(wizard.definition(step).container)


async def has_duplicate_email_error(surface: AutomationSurface) -> bool:
    text = await body_text(surface)
    return any(phrase in text for phrase in DUPLICATE_EMAIL_PHRASES)


async def field_rejected(surface: AutomationSurface, selector: str) -> bool:
    """Native constraint validation flags the field as invalid."""
    validity = await surface.validity(selector)
    if not validity.valid:
        logger.debug("Field invalid", selector=selector, message=validity.message)
    return not validity.valid


async def form_rejected_step(
    surface: AutomationSurface,
    wizard: WizardDefinition,
    step: str,
    field_key: str | None = None,
) -> bool:
    """
    Whether the form refused to leave ``step``.

    True if validation messages show, the step is still on screen, or (when a
    field is given) the browser marks that field invalid.
    """
    if await has_validation_errors(surface):
        return True
    if await is_step_showing(surface, wizard, step):
        return True
    if field_key is not None:
        spec = wizard.definition(step).field(field_key)
        return await field_rejected(surface, spec.selector)
    return False
