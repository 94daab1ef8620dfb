"""Tests for structured logging and run id propagation."""
import asyncio
import io
import json
import logging

import pytest

from cfb_reconcile.core.logging import (
    ColoredFormatter,
    JSONFormatter,
    configure_logging,
    run_id_var,
    run_scope,
)


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest left it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level

    yield root

    root.handlers[:] = handlers
    root.setLevel(level)


def _record(message, level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="cfb_reconcile.test",
        level=level,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRunScope:
    """Context-scoped run ids."""

    def test_sets_and_clears(self):
        with run_scope("abc123") as run_id:
            assert run_id == "abc123"
            assert run_id_var.get() == "abc123"

        assert run_id_var.get() == ""

    def test_restores_outer(self):
        """Should restore the enclosing run id on exit."""
        with run_scope("outer"):
            with run_scope("inner"):
                assert run_id_var.get() == "inner"
            assert run_id_var.get() == "outer"

        assert run_id_var.get() == ""

    def test_cleared_after_error(self):
        with pytest.raises(RuntimeError):
            with run_scope("abc123"):
                raise RuntimeError("boom")

        assert run_id_var.get() == ""

    @pytest.mark.asyncio
    async def test_visible_in_tasks_and_threads(self):
        """Should reach gathered tasks and to_thread workers of the batch."""
        with run_scope("abc123"):
            in_task = await asyncio.create_task(_read_run_id())
            in_thread = await asyncio.to_thread(run_id_var.get)

        assert in_task == "abc123"
        assert in_thread == "abc123"


async def _read_run_id():
    return run_id_var.get()


class TestFormatters:
    """JSON and colored output."""

    def test_json_includes_run_id(self):
        with run_scope("abc123"):
            output = JSONFormatter().format(_record("Resolved 'Ole Miss'"))

        data = json.loads(output)
        assert data["run_id"] == "abc123"
        assert data["message"] == "Resolved 'Ole Miss'"
        assert data["level"] == "INFO"
        assert data["logger"] == "cfb_reconcile.test"
        assert "extra" not in data

    def test_json_extra_fields(self):
        output = JSONFormatter().format(_record("done", season=2024, week=3))

        assert json.loads(output)["extra"] == {"season": 2024, "week": 3}

    def test_colored_appends_run_id(self):
        with run_scope("abc123"):
            output = ColoredFormatter().format(_record("hello", level=logging.WARNING))

        assert "[WARNING]" in output
        assert output.endswith("| run_id=abc123")

    def test_colored_without_run_id(self):
        output = ColoredFormatter().format(_record("hello"))

        assert "run_id" not in output


class TestConfigureLogging:
    """Root logger setup for scripts."""

    def test_json_output(self, restore_root_logger):
        stream = io.StringIO()

        configure_logging("DEBUG", json_output=True, handler=logging.StreamHandler(stream))
        logging.getLogger("cfb_reconcile.sync").debug("index built")

        data = json.loads(stream.getvalue().strip())
        assert data["message"] == "index built"
        assert restore_root_logger.level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        configure_logging("LOUD", json_output=False, handler=logging.StreamHandler(io.StringIO()))

        assert restore_root_logger.level == logging.INFO

    def test_quiets_sqlalchemy(self, restore_root_logger):
        configure_logging("DEBUG", json_output=False, handler=logging.StreamHandler(io.StringIO()))

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
