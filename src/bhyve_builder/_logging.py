"""Centralized logging for bhyve-builder.

The library root logger only carries a NullHandler; attaching real handlers
is the application's job. The CLI calls configure_logging(), which installs a
queue-backed handler so log emission from the watcher task never blocks on
stderr I/O.

Level control:
    BHYVE_BUILDER_LOG_LEVEL=DEBUG  (env var, read at import)
    configure_logging(level=..., quiet=...)  (CLI flags, takes precedence)

CLI output format:
    INFO [2026-02-25 10:02:54] bhyve_builder.guest - Starting bhyve VM (vm_name=packer-vm1)
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "bhyve_builder"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.environ.get("BHYVE_BUILDER_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and missing keys (None)
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# extra= keys shown on the console, in this order. Everything else
# (cmd, output, ...) stays on the record for other handlers.
CONSOLE_CONTEXT_KEYS: tuple[str, ...] = (
    "vm_name",
    "vnic",
    "link",
    "step",
    "exit_code",
    "returncode",
    "restarts",
    "error",
)

# Installer consoles can be chatty; bound memory if stderr stalls.
_QUEUE_CAPACITY = 4096


class _ConsoleFormatter(logging.Formatter):
    """Appends the build context carried in extra= to the message.

    INFO [2026-02-25 10:02:54] bhyve_builder.vnic - Creating VNIC packer0 on link net0 (vnic=packer0 link=net0)
    """

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = [
            f"{key}={value}"
            for key in CONSOLE_CONTEXT_KEYS
            if (value := getattr(record, key, None)) is not None and value != ""
        ]
        if not fields:
            return line
        return f"{line} ({' '.join(fields)})"


class _ClickHandler(logging.Handler):
    """Target handler: writes to stderr via click.echo.

    Runs on the QueueListener's daemon thread. click.echo() strips ANSI
    styling when stderr is not a TTY.
    """

    def __init__(self) -> None:
        super().__init__()
        self.formatter = _ConsoleFormatter(fmt=_FMT, datefmt=_DATEFMT)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            if record.levelno >= logging.WARNING:
                msg = click.style(msg, fg="yellow" if record.levelno == logging.WARNING else "red")
            else:
                msg = click.style(msg, dim=True)
            click.echo(msg, err=True)
        except BlockingIOError:
            pass  # Stderr buffer full -- drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """Queue-backed handler that never blocks the caller.

    Records go into a bounded FIFO drained by a QueueListener thread. When
    the queue is full, records are dropped.
    """

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        """Skip serialization -- same-process queue, no pickle needed."""
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    All bhyve_builder modules use this instead of logging.getLogger()
    so they hang off the library root logger.
    """
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Configure library logging for the CLI entry point.

    Adds a _NonBlockingHandler if none exists (idempotent), then sets the
    log level.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides env var.
        quiet: If True, set level to ERROR. Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
