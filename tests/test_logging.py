"""Tests for console log formatting and CLI logging setup."""

import logging
import sys
from collections.abc import Iterator

import pytest

from bhyve_builder._logging import (
    LIBRARY_LOGGER_NAME,
    _ConsoleFormatter,
    _NonBlockingHandler,
    configure_logging,
)


def _make_record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("bhyve_builder.vnic", logging.INFO, __file__, 1, message, None, None)
    record.__dict__.update(extra)
    return record


@pytest.fixture
def library_logger() -> Iterator[logging.Logger]:
    """Library logger restored to its import-time handlers and level afterwards."""
    logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


# ============================================================================
# Console formatting
# ============================================================================


def test_context_fields_follow_message() -> None:
    record = _make_record("Creating VNIC packer0 on link net0", vnic="packer0", link="net0")

    line = _ConsoleFormatter("%(name)s - %(message)s").format(record)

    assert line == "bhyve_builder.vnic - Creating VNIC packer0 on link net0 (vnic=packer0 link=net0)"


def test_context_fields_in_fixed_order() -> None:
    record = _make_record("bhyve VM powered off", exit_code=3, vm_name="packer-vm1")

    line = _ConsoleFormatter("%(message)s").format(record)

    assert line == "bhyve VM powered off (vm_name=packer-vm1 exit_code=3)"


def test_other_extra_keys_are_not_printed() -> None:
    record = _make_record("Running command", cmd=["/usr/sbin/dladm", "show-link"], context_id="packer0")

    assert _ConsoleFormatter("%(message)s").format(record) == "Running command"


def test_zero_exit_code_is_shown() -> None:
    record = _make_record("bhyve VM finished", exit_code=0)

    assert _ConsoleFormatter("%(message)s").format(record) == "bhyve VM finished (exit_code=0)"


def test_traceback_stays_after_context() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _make_record("Step cleanup failed", step="bhyve")
        record.exc_info = sys.exc_info()

    first, *rest = _ConsoleFormatter("%(message)s").format(record).splitlines()

    assert first == "Step cleanup failed (step=bhyve)"
    assert rest[-1] == "RuntimeError: boom"


# ============================================================================
# configure_logging()
# ============================================================================


def test_configure_logging_is_idempotent(library_logger: logging.Logger) -> None:
    configure_logging(level=logging.DEBUG)
    configure_logging(level="WARNING")

    assert sum(isinstance(h, _NonBlockingHandler) for h in library_logger.handlers) == 1
    assert library_logger.level == logging.WARNING


def test_quiet_wins_over_level(library_logger: logging.Logger) -> None:
    configure_logging(level=logging.DEBUG, quiet=True)

    assert library_logger.level == logging.ERROR
