"""Exception hierarchy for bhyve-builder.

All exceptions inherit from BuilderError.

Hierarchy:
    BuilderError (base)
    ├── GuestError
    │   ├── GuestStartError        ← bhyve could not be spawned (halts the build)
    │   ├── GuestStateError        ← supervisor misuse (second guest, bad transition)
    │   ├── GuestConfigError       ← descriptor does not match the supervisor
    │   └── GuestWaitTimeoutError  ← guest did not finish before the deadline
    └── VnicError
        └── VnicCreateError        ← dladm create-vnic failed (halts the build)

Teardown paths (bhyvectl --destroy, dladm delete-vnic) never raise; they
log and report success as a bool.
"""

from __future__ import annotations

from typing import Any


class BuilderError(Exception):
    """Base exception for all builder errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Guest Errors
# =============================================================================


class GuestError(BuilderError):
    """Base class for guest supervision errors."""


class GuestStartError(GuestError):
    """bhyve failed to start.

    Raised when the hypervisor process cannot be spawned (binary missing,
    permission denied). Also recorded on GuestRun.restart_error when the
    relaunch after a guest reboot fails.
    """


class GuestStateError(GuestError):
    """Invalid supervisor usage.

    Raised on an invalid state transition or when starting a second guest
    while one is still being tracked.
    """


class GuestConfigError(GuestError):
    """Launch descriptor does not fit the supervisor it was handed to."""


class GuestWaitTimeoutError(GuestError):
    """Guest did not reach a final state before the wait deadline."""


# =============================================================================
# VNIC Errors
# =============================================================================


class VnicError(BuilderError):
    """Base class for virtual NIC errors."""


class VnicCreateError(VnicError):
    """dladm create-vnic failed.

    Attributes:
        stderr: Trimmed diagnostic output from dladm (if available)
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None, stderr: str = ""):
        super().__init__(message, context)
        self.stderr = stderr
