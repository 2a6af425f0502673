"""
pytest plugin: command-line options, markers, live-browser fixtures and the
run summary reporter.

Live tests (marked ``live``) are skipped unless ``--live`` is given.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import structlog
from playwright.async_api import Page, async_playwright

from stepflow.config import RunSettings, TestData
from stepflow.driver import StepFlowDriver
from stepflow.leadform import build_lead_form_wizard
from stepflow.log_config import configure_logging
from stepflow.reporting import SummaryReporter
from stepflow.surface import PlaywrightSurface

logger = structlog.get_logger(__name__)

SETTINGS_KEY = pytest.StashKey[RunSettings]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("stepflow", "lead form end-to-end tests")
    group.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked 'live' against the real lead form",
    )
    group.addoption(
        "--headed",
        action="store_true",
        default=False,
        help="Show the browser window during live tests",
    )
    group.addoption(
        "--summary-path",
        default=None,
        help="Write a markdown run summary to this path (default for --live: STEPFLOW_SUMMARY_PATH)",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "live: runs against the real lead form (requires --live)")
    config.addinivalue_line(
        "markers", "bug(number): documents a known product bug; expected to fail while the bug exists"
    )

    settings = RunSettings.from_env()
    config.stash[SETTINGS_KEY] = settings
    configure_logging(settings.log_level)

    summary_path = config.getoption("summary_path")
    if summary_path is None and config.getoption("live"):
        summary_path = settings.summary_path
    # Only the controlling process writes the summary under xdist
    if summary_path and not hasattr(config, "workerinput"):
        config.pluginmanager.register(SummaryReporter(summary_path), "stepflow-summary")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("live"):
        return
    skip_live = pytest.mark.skip(reason="needs --live to run against the real lead form")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Iterator[None]:
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"rep_{report.when}", report)


@pytest.fixture(scope="session")
def run_settings(pytestconfig: pytest.Config) -> RunSettings:
    return pytestconfig.stash[SETTINGS_KEY]


@pytest.fixture(scope="session")
def form_data() -> TestData:
    return TestData()


@pytest_asyncio.fixture
async def browser_page(run_settings: RunSettings, pytestconfig: pytest.Config) -> AsyncIterator[Page]:
    """A fresh page in its own browser context."""
    async with async_playwright() as pw:
        browser_type = getattr(pw, run_settings.browser)
        browser = await browser_type.launch(
            headless=run_settings.headless and not pytestconfig.getoption("headed")
        )
        context = await browser.new_context(base_url=run_settings.base_url)
        context.set_default_timeout(run_settings.action_timeout_ms)
        context.set_default_navigation_timeout(run_settings.navigation_timeout_ms)
        try:
            yield await context.new_page()
        finally:
            await context.close()
            await browser.close()


def build_lead_driver(page: Page, run_settings: RunSettings, form_data: TestData) -> StepFlowDriver:
    """Driver for the lead form on ``page``, unopened."""
    policy = run_settings.wait_policy()
    surface = PlaywrightSurface(
        page,
        action_timeout_ms=run_settings.action_timeout_ms,
        poll_interval_ms=policy.poll_interval_ms,
    )
    return StepFlowDriver(
        surface,
        build_lead_form_wizard(run_settings.base_url),
        data=form_data,
        policy=policy,
        screenshot_dir=run_settings.screenshot_dir,
    )


@pytest_asyncio.fixture
async def lead_driver(
    browser_page: Page,
    run_settings: RunSettings,
    form_data: TestData,
    request: pytest.FixtureRequest,
) -> AsyncIterator[StepFlowDriver]:
    """Driver opened on the lead form's first step; screenshots the page if the test fails."""
    driver = build_lead_driver(browser_page, run_settings, form_data)
    await driver.open()
    yield driver

    report = getattr(request.node, "rep_call", None)
    if report is not None and report.failed:
        with contextlib.suppress(Exception):
            path = await driver.screenshot(f"failed-{request.node.name}")
            logger.info("Failure screenshot saved", test=request.node.name, path=str(path))
