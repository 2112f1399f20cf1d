"""Shared pytest fixtures: settings, repository, fake transport pieces."""

from dataclasses import replace

import pytest

from boe_subastas.config.settings import ScraperSettings
from boe_subastas.core.budget import RequestBudget, RuntimeBudget
from boe_subastas.db.database import Repository
from boe_subastas.tests.fakes import FakeHttp, SleepRecorder


# ============================================================================
# SETTINGS / STORAGE
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    """Fast, isolated profile: no real delays, everything under tmp_path."""
    return replace(
        ScraperSettings(),
        visit_delay_min=0.0,
        visit_delay_max=0.0,
        pdf_delay_min=0.0,
        pdf_delay_max=0.0,
        degraded_wait_seconds=30.0,
        db_path=str(tmp_path / "boe.db"),
        pdf_dir=str(tmp_path / "pdfs"),
        evidence_dir=str(tmp_path / "evidence"),
    )


@pytest.fixture
def repo(settings):
    repository = Repository(settings.db_path)
    yield repository
    repository.close()


# ============================================================================
# FAKES
# ============================================================================

@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def request_budget():
    return RequestBudget(150)


@pytest.fixture
def runtime_budget():
    return RuntimeBudget(1800, clock=lambda: 0.0)
