"""
Pytest fixtures for the recurring operation executor test suite.

Provides:
- In-memory SQLite engine and session factory with all tables created
- DeterministicClock
- Fake collaborators (abilities, readers, permitted versions)
- captured_logs: dca_kernel logs as parsed JSON dicts
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest

import dca_batch.models  # noqa: F401  registers batch tables
from dca_kernel.db import build_engine, build_session_factory, create_tables
from dca_kernel.domain.authorization import AppReference
from dca_kernel.domain.clock import DeterministicClock
from dca_kernel.logging_config import LogContext, StructuredFormatter, reset_logging
from dca_kernel.services.execution_records import SqlExecutionRecordStore

from dca_batch.domain.types import OperationKind, ScheduledOperation
from dca_batch.services.job_store import SqlJobStore

from tests.fakes import (
    FakePermittedVersionStore,
    FakePriceOracle,
    FakeQuoteSource,
    FakeTokenReader,
    FakeVaultReader,
)

OWNER = "0x" + "a1" * 20
RECIPIENT = "0x" + "b2" * 20
TOKEN = "0x" + "c3" * 20
TOKEN_OUT = "0x" + "d4" * 20
VAULT = "0x" + "e5" * 20
APP_ID = 42

FIXED_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Leave no handlers or context behind between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def captured_logs():
    """
    Capture dca_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, executor):
            executor.fire(job_id)
            logs = captured_logs()
            assert any(r["message"] == "fire_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("dca_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time and persistence
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=FIXED_NOW)


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def job_store(session_factory, clock):
    return SqlJobStore(session_factory, clock=clock)


@pytest.fixture
def record_store(session_factory, clock):
    return SqlExecutionRecordStore(session_factory, clock=clock)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def permitted_versions():
    return FakePermittedVersionStore({(OWNER, APP_ID): 1})


@pytest.fixture
def tokens():
    reader = FakeTokenReader()
    reader.set_token(TOKEN, decimals=18)
    reader.set_token(TOKEN_OUT, decimals=6)
    reader.set_balance(TOKEN, OWNER, 10 * 10**18)
    return reader


@pytest.fixture
def vaults():
    return FakeVaultReader()


@pytest.fixture
def prices():
    return FakePriceOracle({"ethereum": "3000"})


@pytest.fixture
def quotes():
    return FakeQuoteSource()


# =============================================================================
# Job builders
# =============================================================================


def make_job(
    kind: OperationKind = OperationKind.TRANSFER,
    parameters: dict | None = None,
    version: int = 1,
    **overrides,
) -> ScheduledOperation:
    """Build an unsaved job with transfer parameters by default."""
    if parameters is None:
        parameters = {
            "recipient_address": RECIPIENT,
            "token_address": TOKEN,
            "amount": "1.0",
        }
    fields = dict(
        job_id=uuid4(),
        kind=kind,
        owner_address=OWNER,
        app=AppReference(app_id=APP_ID, version=version),
        parameters=parameters,
        name=f"{kind.value} job",
        interval="1 day",
    )
    fields.update(overrides)
    return ScheduledOperation(**fields)
