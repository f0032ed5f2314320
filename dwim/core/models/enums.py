from enum import Enum, IntEnum

class Scope(Enum):
    PROJECT_LOCAL      = "project-local"
    USER_LEVEL         = "user-level"
    UPSTREAM_UNIVERSAL = "upstream-universal"

class ResolutionPath(Enum):
    NATIVE              = "native"
    INTERPRETATION      = "interpretation"
    CLARIFICATION_CACHE = "clarification-cache"
    CLARIFICATION       = "clarification"

class Outcome(Enum):
    EXECUTED               = "executed"
    CLARIFICATION_PENDING  = "clarification-pending"
    CLARIFICATION_RESOLVED = "clarification-resolved"
    FAILED                 = "failed"

class CreatedFrom(Enum):
    MANUAL   = "manual"
    PROMOTED = "promoted"

class TokenInvalidReason(Enum):
    NOT_FOUND        = "not-found"
    EXPIRED          = "expired"
    ALREADY_RESOLVED = "already-resolved"

class FailReason(Enum):
    TIMEOUT   = "timeout"
    FAILURE   = "failure"
    MALFORMED = "malformed"

class ExitCode(IntEnum):
    OK              = 0
    USAGE           = 64
    TOKEN_NOT_FOUND = 65
    TOKEN_EXPIRED   = 66
    TOKEN_RESOLVED  = 67
    FAILURE         = 70
    PENDING         = 75

    @classmethod
    def for_token(cls, reason: TokenInvalidReason) -> "ExitCode":
        return {
            TokenInvalidReason.NOT_FOUND:        cls.TOKEN_NOT_FOUND,
            TokenInvalidReason.EXPIRED:          cls.TOKEN_EXPIRED,
            TokenInvalidReason.ALREADY_RESOLVED: cls.TOKEN_RESOLVED,
        }[reason]

    @classmethod
    def reserved(cls) -> frozenset:
        """Statuses dwim itself reports; a child exiting with one is remapped."""
        return frozenset(int(c) for c in cls if c is not cls.OK)
