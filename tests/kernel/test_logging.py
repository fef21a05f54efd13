"""Tests for the structured logging system (dca_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

from dca_kernel.exceptions import InsufficientBalanceError
from dca_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "dca_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        job_id = uuid4()
        get_logger("test").info(
            "fire_completed", extra={"job_id": job_id, "price": Decimal("3000.5")},
        )

        record = _parse_all_logs(stream)[0]
        assert record["job_id"] == str(job_id)
        assert record["price"] == "3000.5"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(job_id="job-1", operation_kind="transfer"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["job_id"] == "job-1"
        assert inside["operation_kind"] == "transfer"
        assert "job_id" not in outside

    def test_kernel_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientBalanceError("0xowner", "0xtoken", 5, 10, 18)
        except InsufficientBalanceError:
            get_logger("test").exception("failed")

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "InsufficientBalanceError"
        assert record["exc_code"] == "INSUFFICIENT_BALANCE"
        assert record["exc_balance_raw"] == 5
        assert record["exc_required_raw"] == 10
        assert "traceback" in record


class TestLogContext:
    def test_bind_restores_previous(self):
        LogContext.set(job_id="outer")
        with LogContext.bind(job_id="inner"):
            assert LogContext.get_all()["job_id"] == "inner"
        assert LogContext.get_all()["job_id"] == "outer"

    def test_clear(self):
        LogContext.set(fire_id="f", owner_address="0xabc")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        assert len(logging.getLogger("dca_kernel").handlers) == 1

    def test_get_logger_namespaced(self):
        assert get_logger("batch.executor").name == "dca_kernel.batch.executor"
