"""
dwim.core.exceptions
====================

Error taxonomy shared by every layer.

A native-lookup miss and a pending clarification are *not* errors and
have no exception here: the lookup chain returns ``None`` and a pending
clarification is an ordinary outcome.  Only the CLI turns these into
exit codes.
"""
from __future__ import annotations

from dwim.core.models.enums import TokenInvalidReason


class DwimError(Exception):
    """Root of everything dwim raises on purpose."""


class ClarificationTokenInvalid(DwimError):
    def __init__(self, reason: TokenInvalidReason, token: str):
        self.reason = reason
        self.token = token
        super().__init__(self._describe())

    def _describe(self) -> str:
        return {
            TokenInvalidReason.NOT_FOUND:        f"no clarification request with token {self.token}",
            TokenInvalidReason.EXPIRED:          f"clarification token {self.token} has expired",
            TokenInvalidReason.ALREADY_RESOLVED: f"clarification token {self.token} was already answered",
        }[self.reason]


class AnswerFormatError(DwimError):
    """Answer text could not be mapped onto the pending questions."""


class InterpretationTimeout(DwimError):
    pass


class InterpretationFailure(DwimError):
    """The interpretation service declined, errored or was unreachable."""


class StructuredParseError(InterpretationFailure):
    """Model response could not be parsed as JSON/YAML."""


class ExecutionFailure(DwimError):
    def __init__(self, exit_code: int, message: str = ""):
        self.exit_code = exit_code
        super().__init__(message or f"action exited with status {exit_code}")


class LedgerWriteFailure(DwimError):
    """Append to the usage ledger failed; the primary action is unaffected."""


class LayoutConflict(DwimError):
    """A command directory entry is in the way of a new native resolution."""
