"""
Markdown summary of a test run.

Separates bug-documentation tests (marked ``bug``; expected to fail while the
bug exists) from validation tests (core behaviour; must pass), and lists bugs
whose tests started passing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import pytest
import structlog
from jinja2 import Environment

logger = structlog.get_logger(__name__)

_BUG_IN_NAME = re.compile(r"bug[\s_-]*(\d+)", re.IGNORECASE)


@dataclass
class TestOutcome:
    """Final status of one test."""

    __test__ = False

    name: str
    status: str  # passed / failed / skipped
    duration_s: float = 0.0
    bug_number: int | None = None
    is_bug: bool = False

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class RunSummary:
    """Aggregated results of a run."""

    outcomes: list[TestOutcome] = field(default_factory=list)
    duration_s: float = 0.0
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def bug_tests(self) -> list[TestOutcome]:
        return [o for o in self.outcomes if o.is_bug]

    @property
    def validation_tests(self) -> list[TestOutcome]:
        return [o for o in self.outcomes if not o.is_bug]

    @property
    def passed(self) -> list[TestOutcome]:
        return [o for o in self.outcomes if o.passed]

    @property
    def failed(self) -> list[TestOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def skipped(self) -> list[TestOutcome]:
        return [o for o in self.outcomes if o.status == "skipped"]

    @property
    def fixed_bugs(self) -> list[TestOutcome]:
        return [o for o in self.bug_tests if o.passed]


def bug_number_from_name(name: str) -> int | None:
    match = _BUG_IN_NAME.search(name)
    return int(match.group(1)) if match else None


def render_summary(summary: RunSummary) -> str:
    env = Environment(autoescape=False, trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
    template = env.from_string(SUMMARY_TEMPLATE)
    validation = summary.validation_tests
    bugs = summary.bug_tests
    return template.render(
        summary=summary,
        generated=summary.generated_at.strftime("%Y-%m-%d %H:%M:%S %Z"),
        validation_passed=[o for o in validation if o.passed],
        validation_failed=[o for o in validation if o.failed],
        bugs_passed=summary.fixed_bugs,
        bugs_failed=[o for o in bugs if o.failed],
    )


def write_summary(summary: RunSummary, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_summary(summary), encoding="utf-8")
    logger.info(
        "Test summary written",
        path=str(path),
        total=len(summary.outcomes),
        failed=len(summary.failed),
    )
    return path


class SummaryReporter:
    """pytest plugin object collecting outcomes and writing the summary at session end."""

    def __init__(self, summary_path: str | Path) -> None:
        self.summary_path = Path(summary_path)
        self.summary = RunSummary()
        self._bug_numbers: dict[str, int | None] = {}
        self._outcomes: dict[str, TestOutcome] = {}
        self._started: datetime | None = None

    def pytest_sessionstart(self, session: pytest.Session) -> None:
        self._started = datetime.now(timezone.utc)
        logger.info(
            "Bug documentation tests are expected to fail while their bugs exist",
            summary_path=str(self.summary_path),
        )

    def pytest_collection_modifyitems(self, items: list[pytest.Item]) -> None:
        for item in items:
            marker = item.get_closest_marker("bug")
            if marker is not None:
                number = marker.args[0] if marker.args else bug_number_from_name(item.name)
                self._bug_numbers[item.nodeid] = number

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        # Setup errors and skips never reach the call phase
        if report.when != "call" and not (report.when == "setup" and report.outcome != "passed"):
            return
        name = report.nodeid.split("::")[-1]
        self._outcomes[report.nodeid] = TestOutcome(
            name=name,
            status=report.outcome,
            duration_s=report.duration,
            bug_number=self._bug_numbers.get(report.nodeid) or bug_number_from_name(name),
            is_bug=report.nodeid in self._bug_numbers or "bug" in name.lower(),
        )

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        self.summary.outcomes = list(self._outcomes.values())
        if self._started is not None:
            self.summary.duration_s = (datetime.now(timezone.utc) - self._started).total_seconds()
        write_summary(self.summary, self.summary_path)


SUMMARY_TEMPLATE = """\
# Test Execution Summary

**Generated:** {{ generated }}

---

## Overall Statistics

| Metric | Count |
|--------|-------|
| **Total Tests** | {{ summary.outcomes | length }} |
| **Passed** | {{ summary.passed | length }} |
| **Failed** | {{ summary.failed | length }} |
| **Skipped** | {{ summary.skipped | length }} |
| **Duration** | {{ "%.2f" | format(summary.duration_s) }}s |

## Test Results by Category

### Validation Tests (Core Functionality)

| Status | Count | Description |
|--------|-------|-------------|
| Passed | {{ validation_passed | length }} | Core functionality tests working correctly |
| Failed | {{ validation_failed | length }} | Core functionality issues (needs attention) |

{% if validation_passed %}
**Passed Validation Tests:**
{% for test in validation_passed %}
- {{ test.name }}
{% endfor %}

{% endif %}
{% if validation_failed %}
**Failed Validation Tests:**
{% for test in validation_failed %}
- {{ test.name }}
{% endfor %}

{% endif %}
### Bug Documentation Tests

| Status | Count | Description |
|--------|-------|-------------|
| Passed | {{ bugs_passed | length }} | Bugs fixed - tests now pass |
| Failed | {{ bugs_failed | length }} | Bugs still exist (expected behavior) |

**Important:** Bug documentation tests are designed to fail while the bugs exist. Tests will pass once the bugs are fixed.

{% if bugs_passed %}
**Bugs Fixed (Tests Passing):**
{% for test in bugs_passed %}
- Bug {{ test.bug_number if test.bug_number is not none else "?" }}: {{ test.name }} - **FIXED**
{% endfor %}

{% endif %}
---

## Notes

- **Bug Tests:** document bugs in the system. A failure means the bug still exists.
- **Validation Tests:** test core functionality and should always pass.
- **Screenshots:** visual evidence is saved in the screenshot directory.
"""
