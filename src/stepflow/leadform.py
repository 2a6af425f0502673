"""
The lead-generation wizard: its step table and the flows tests reuse.

Steps: zip code -> interest checkbox -> property type -> contact info -> phone,
ending on a thank-you page. Zip codes outside the service area leave the
wizard through the ``out_of_area`` branch instead of reaching step 2.
"""

from __future__ import annotations

from enum import StrEnum

import structlog

from stepflow.checks import body_text
from stepflow.driver import StepFlowDriver
from stepflow.models import (
    BranchSpec,
    ConfirmationSpec,
    FieldKind,
    FieldSpec,
    StepDefinition,
    TransitionOutcome,
    WizardDefinition,
)
from stepflow.surface import AutomationSurface

logger = structlog.get_logger(__name__)

FORM_ROOT = "#form-container-1"


class LeadFormStep(StrEnum):
    ZIPCODE = "zipcode"
    INTEREST = "interest"
    PROPERTY_TYPE = "property_type"
    CONTACT = "contact"
    PHONE = "phone"


OUT_OF_AREA = "out_of_area"
OUT_OF_AREA_CONTAINER = f"{FORM_ROOT} > div.steps.step-sorry"
SERVICE_AREA_EMAIL_INPUT = f'{OUT_OF_AREA_CONTAINER} input[type="email"]'
SERVICE_AREA_SUBMIT = f'{OUT_OF_AREA_CONTAINER} button[type="submit"]'
SERVICE_AREA_PHRASES: tuple[str, ...] = ("sorry", "unfortunately", "don't yet install", "your area")


def _container(n: int) -> str:
    return f"{FORM_ROOT} > div.steps.step-{n}"


def _next_button(n: int) -> str:
    return f'button[data-tracking="btn-step-{n}"], {_container(n)} button[type="submit"]'


def build_lead_form_wizard(base_url: str) -> WizardDefinition:
    """Step table for the lead form served at ``base_url``."""
    steps = (
        StepDefinition(
            step=LeadFormStep.ZIPCODE,
            container=_container(1),
            advance_selector=_next_button(1),
            fields=(
                FieldSpec(
                    key="zipcode",
                    selector=f'{_container(1)} input[data-zip-code-input], {_container(1)} input[name="zipCode"]',
                ),
            ),
            branches=(BranchSpec(name=OUT_OF_AREA, container=OUT_OF_AREA_CONTAINER),),
        ),
        StepDefinition(
            step=LeadFormStep.INTEREST,
            container=_container(2),
            advance_selector=_next_button(2),
            fields=(
                FieldSpec(
                    key="interest",
                    selector=f'{_container(2)} input[type="checkbox"]',
                    kind=FieldKind.CHECKBOX,
                    label_selector=f"{_container(2)} label",
                ),
            ),
        ),
        StepDefinition(
            step=LeadFormStep.PROPERTY_TYPE,
            container=_container(3),
            advance_selector=_next_button(3),
            fields=(
                FieldSpec(
                    key="property_type",
                    selector=f'{_container(3)} input[type="radio"][name="typeOfProperty"]',
                    kind=FieldKind.RADIO,
                    label_selector=f"{_container(3)} label",
                ),
            ),
        ),
        StepDefinition(
            step=LeadFormStep.CONTACT,
            container=_container(4),
            advance_selector=_next_button(4),
            fields=(
                FieldSpec(key="name", selector='input[data-name-input], input[name="name"]'),
                FieldSpec(
                    key="email",
                    selector='input[type="email"][name="email"][required]',
                    kind=FieldKind.EMAIL,
                ),
            ),
        ),
        StepDefinition(
            step=LeadFormStep.PHONE,
            container=_container(5),
            advance_selector=(
                f'button[data-tracking="btn-step-5"], {_container(5)} button[type="submit"], '
                'button:has-text("Submit Your Request")'
            ),
            fields=(FieldSpec(key="phone", selector='input[name="phone"]', kind=FieldKind.PHONE),),
        ),
    )
    return WizardDefinition(
        entry_url=base_url.rstrip("/") + "/",
        steps=steps,
        confirmation=ConfirmationSpec(url_pattern=r"thank", heading_selector="h1:has-text('Thank')"),
    )


async def navigate_to_contact(driver: StepFlowDriver, zipcode: str | None = None) -> None:
    """Pass zip code, interest and property type; the driver ends on the contact step."""
    data = driver.session.data
    await driver.fill(LeadFormStep.ZIPCODE, "zipcode", zipcode or data.zipcode)
    await driver.advance(LeadFormStep.ZIPCODE)
    await driver.select_option(LeadFormStep.INTEREST, "interest")
    await driver.advance(LeadFormStep.INTEREST)
    await driver.select_option(LeadFormStep.PROPERTY_TYPE, "property_type")
    await driver.advance(LeadFormStep.PROPERTY_TYPE)


async def navigate_to_phone(
    driver: StepFlowDriver,
    name: str | None = None,
    email: str | None = None,
    zipcode: str | None = None,
) -> str:
    """Continue through the contact step; returns the email that was used."""
    data = driver.session.data
    email = email or data.unique_email()
    await navigate_to_contact(driver, zipcode=zipcode)
    await driver.fill(LeadFormStep.CONTACT, "name", name or data.name)
    await driver.fill(LeadFormStep.CONTACT, "email", email)
    await driver.advance(LeadFormStep.CONTACT)
    return email


async def complete_full_form(
    driver: StepFlowDriver,
    *,
    zipcode: str | None = None,
    name: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> tuple[str, TransitionOutcome]:
    """Fill every step with valid data (or the overrides) and submit."""
    email = await navigate_to_phone(driver, name=name, email=email, zipcode=zipcode)
    await driver.fill(LeadFormStep.PHONE, "phone", phone or driver.session.data.phone)
    outcome = await driver.submit_final()

    logger.info("Lead form submitted", email=email, outcome=outcome.kind)
    return email, outcome


async def shows_service_area_message(surface: AutomationSurface) -> bool:
    """The out-of-area screen is explaining that the zip code is not served."""
    text = await body_text(surface)
    return any(phrase in text for phrase in SERVICE_AREA_PHRASES)
