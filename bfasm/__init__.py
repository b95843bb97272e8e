from .config import DEFAULT_TAPE_SIZE, ConfigurationOutOfRange, TapeConfig
from .interpreter import ExecutionState, RunInterpreter, StepLimitExceeded
from .translator import (
    Run,
    Token,
    TokenKind,
    TranslationError,
    TranslationResult,
    Translator,
    UnclosedLoop,
    UnexpectedToken,
    UnmatchedLoopClose,
    coalesce,
    scan,
)

__all__ = [
    "ConfigurationOutOfRange",
    "DEFAULT_TAPE_SIZE",
    "ExecutionState",
    "Run",
    "RunInterpreter",
    "StepLimitExceeded",
    "TapeConfig",
    "Token",
    "TokenKind",
    "TranslationError",
    "TranslationResult",
    "Translator",
    "UnclosedLoop",
    "UnexpectedToken",
    "UnmatchedLoopClose",
    "coalesce",
    "scan",
]
