"""Error taxonomy for the defence call engine."""

from __future__ import annotations

from typing import Literal

RejectionReason = Literal[
    "unauthorized",
    "config_missing",
    "time_required",
    "invalid_time_format",
    "creation_failed",
]


class CallRejected(Exception):
    """A call request was refused. Raised before any side effect, except for
    ``creation_failed`` which is raised after the gateway gave up."""

    def __init__(self, reason: RejectionReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class GatewayError(Exception):
    """The chat platform refused or failed a channel/message operation."""
