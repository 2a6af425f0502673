"""
Configuration and shared test data.

``RunSettings`` is read from the environment (and a ``.env`` file) once per
test run. ``TestData`` is an immutable value handed to each wizard session;
nothing here is process-wide mutable state.
"""

from __future__ import annotations

import os
import time
import uuid
from typing import TYPE_CHECKING, ClassVar

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from stepflow.waits import WaitPolicy

ENV_PREFIX = "STEPFLOW_"

DEFAULT_BASE_URL = "https://test-qa.capslock.global"


class ContactData(BaseModel):
    """Name, email and phone for one simulated lead."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: str


class InvalidZipcodes(BaseModel):
    model_config = ConfigDict(frozen=True)

    less_than_5_digits: str = "1234"
    more_than_5_digits: str = "123456"
    non_numeric: str = "12abc"
    empty: str = ""
    all_zeros: str = "00000"
    # Redirect to the out-of-area screen; business behaviour, not a bug
    out_of_area: tuple[str, ...] = ("11111", "12345")


class InvalidEmails(BaseModel):
    model_config = ConfigDict(frozen=True)

    no_domain: str = "test@test"
    invalid_format: str = "invalid-email-format"
    no_at_symbol: str = "testtest.com"


class InvalidPhones(BaseModel):
    model_config = ConfigDict(frozen=True)

    less_than_10_digits: str = "123456789"
    more_than_10_digits: str = "12345678901"
    all_zeros: str = "0000000000"
    with_dashes: str = "123-456-7890"
    non_numeric: str = "123-456-789a"


class TestData(BaseModel):
    """Centralized values used by the form tests."""

    __test__: ClassVar[bool] = False

    model_config = ConfigDict(frozen=True)

    zipcode: str = "23451"
    name: str = "John Smith"
    email_domain: str = "example.com"
    phone: str = "1234567890"

    invalid_zipcodes: InvalidZipcodes = Field(default_factory=InvalidZipcodes)
    invalid_emails: InvalidEmails = Field(default_factory=InvalidEmails)
    invalid_phones: InvalidPhones = Field(default_factory=InvalidPhones)

    users: dict[str, ContactData] = Field(
        default_factory=lambda: {
            "default": ContactData(name="Test User", email="test@test.test", phone="1234567890"),
            "john_doe": ContactData(name="John Doe", email="johndoe@example.com", phone="1111111111"),
            "jane_smith": ContactData(name="Jane Smith", email="janesmith@example.com", phone="2222222222"),
        }
    )

    @field_validator("zipcode")
    @classmethod
    def validate_zipcode(cls, v: str) -> str:
        if not (len(v) == 5 and v.isdigit()):
            raise ValueError("Valid zipcode must be exactly 5 digits")
        return v

    def user(self, name: str) -> ContactData:
        try:
            return self.users[name]
        except KeyError:
            raise KeyError(f"No test user named '{name}'") from None

    def unique_email(self, prefix: str = "test") -> str:
        """Email address that has never been registered before."""
        stamp = int(time.time() * 1000)
        return f"{prefix}-{stamp}-{uuid.uuid4().hex[:6]}@{self.email_domain}"

    def duplicate_test_email(self) -> str:
        return self.unique_email("duplicate-test")


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


class RunSettings(BaseModel):
    """Settings for a live test run."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Lead form entry URL")
    thank_you_path: str = Field(default="/thankyou", description="Confirmation page path")
    browser: str = Field(default="chromium", description="Playwright browser type")
    headless: bool = Field(default=True)
    screenshot_dir: str = Field(default="screenshots")
    summary_path: str = Field(default="reports/test-summary.md")
    timeout_scale: float = Field(default=1.0, gt=0.0, le=10.0, description="Multiplier for every wait bound")
    action_timeout_ms: int = Field(default=30000, ge=1000)
    navigation_timeout_ms: int = Field(default=60000, ge=1000)
    log_level: str = Field(default="INFO")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Base URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("browser")
    @classmethod
    def validate_browser(cls, v: str) -> str:
        v = v.lower()
        if v not in ("chromium", "firefox", "webkit"):
            raise ValueError(f"Unsupported browser: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Unsupported log level: {v}")
        return v

    @property
    def thank_you_url(self) -> str:
        return f"{self.base_url}{self.thank_you_path}"

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> RunSettings:
        """Build settings from ``STEPFLOW_*`` environment variables."""
        if load_env_file:
            load_dotenv()

        return cls(
            base_url=_env("BASE_URL", DEFAULT_BASE_URL),
            thank_you_path=_env("THANK_YOU_PATH", "/thankyou"),
            browser=_env("BROWSER", "chromium"),
            headless=_env("HEADLESS", "true").lower() not in ("0", "false", "no"),
            screenshot_dir=_env("SCREENSHOT_DIR", "screenshots"),
            summary_path=_env("SUMMARY_PATH", "reports/test-summary.md"),
            timeout_scale=float(_env("TIMEOUT_SCALE", "1.0")),
            log_level=_env("LOG_LEVEL", "INFO"),
        )

    def wait_policy(self) -> WaitPolicy:
        from stepflow.waits import WaitPolicy

        return WaitPolicy().scaled(self.timeout_scale)
