"""
Exception hierarchy for mirrorcal.

Command and detection failures are per-target: callers catch them and record
the failure on the owning tile or axis. Geometry failures never raise, they
yield None.
"""

from __future__ import annotations

from typing import Literal

from .types import Axis, MotorRef, TileAddress


CommandFailureReason = Literal["ack-timeout", "completion-timeout", "error", "unknown"]


class MirrorCalError(Exception):
    """Base class for all mirrorcal errors."""


class CommandError(MirrorCalError):
    """A device command failed. Carries the failure reason and target context."""

    reason: CommandFailureReason = "unknown"

    def __init__(
        self,
        message: str,
        *,
        motor: MotorRef | None = None,
        tile: TileAddress | None = None,
        axis: Axis | None = None,
        error_code: str | None = None,
        command_id: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.motor = motor
        self.tile = tile
        self.axis = axis
        self.error_code = error_code
        self.command_id = command_id

    def describe(self) -> str:
        """Human readable one-liner with the target context."""
        parts = [f"[{self.reason}]"]
        if self.tile is not None:
            parts.append(f"tile {self.tile.key}")
        if self.axis is not None:
            parts.append(f"axis {self.axis}")
        if self.motor is not None:
            parts.append(f"motor {self.motor.key}")
        if self.error_code is not None:
            parts.append(f"code {self.error_code}")
        parts.append(self.message)
        return " ".join(parts)


class AckTimeoutError(CommandError):
    """The controller never acknowledged the command."""

    reason = "ack-timeout"


class CompletionTimeoutError(CommandError):
    """The command was acknowledged but did not complete in time."""

    reason = "completion-timeout"


class DeviceError(CommandError):
    """The controller reported an error for the command."""

    reason = "error"


class DetectionTimeoutError(MirrorCalError):
    """No detection response arrived for a request in time."""

    def __init__(self, request_id: int, timeout_s: float):
        super().__init__(f"Detection request {request_id} timed out after {timeout_s:.2f}s")
        self.request_id = request_id
        self.timeout_s = timeout_s


class RunnerStateError(MirrorCalError):
    """An operation is not legal in the controller's current phase or mode."""


class ConfigError(MirrorCalError):
    """Configuration file is missing or invalid."""
