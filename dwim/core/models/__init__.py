from .enums         import (
    Scope,
    ResolutionPath,
    Outcome,
    CreatedFrom,
    TokenInvalidReason,
    FailReason,
    ExitCode,
)
from .invocation    import Invocation
from .scope         import ScopeContext
from .resolution    import NativeResolution
from .clarification import Question, ClarificationRequest, CachedResolution
from .candidate     import PromotionCandidate, PromotionReport

__all__ = [
    "Scope",
    "ResolutionPath",
    "Outcome",
    "CreatedFrom",
    "TokenInvalidReason",
    "FailReason",
    "ExitCode",
    "Invocation",
    "ScopeContext",
    "NativeResolution",
    "Question",
    "ClarificationRequest",
    "CachedResolution",
    "PromotionCandidate",
    "PromotionReport",
]
