from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TAPE_SIZE = 30720
MIN_TAPE_SIZE = 1
MAX_TAPE_SIZE = 4_294_967_296  # 4 GiB
# The reference interpreter keeps the whole tape in memory.
MAX_RUN_TAPE_SIZE = 1 << 24


class ConfigurationOutOfRange(ValueError):
    """Raised when a tape size falls outside [MIN_TAPE_SIZE, MAX_TAPE_SIZE]."""

    def __init__(self, value: int) -> None:
        super().__init__(
            f"tape size {value} is outside the range {MIN_TAPE_SIZE}..{MAX_TAPE_SIZE}"
        )
        self.value = value


def validate_tape_size(value: int) -> int:
    if value < MIN_TAPE_SIZE or value > MAX_TAPE_SIZE:
        raise ConfigurationOutOfRange(value)
    return value


@dataclass(frozen=True)
class TapeConfig:
    size: int = DEFAULT_TAPE_SIZE
    notices: Tuple[str, ...] = ()

    @classmethod
    def from_size(cls, requested: int) -> "TapeConfig":
        notices: List[str] = []
        size = requested
        try:
            validate_tape_size(requested)
        except ConfigurationOutOfRange:
            if requested > MAX_TAPE_SIZE:
                size = MAX_TAPE_SIZE
                notices.append(
                    f"provided tape size {requested} is bigger than the maximum value (4 GiB); "
                    f"using {MAX_TAPE_SIZE}"
                )
            else:
                size = MIN_TAPE_SIZE
        if size == MIN_TAPE_SIZE:
            notices.append(
                f"provided tape size {requested} is at or below one; using {MIN_TAPE_SIZE}"
            )
        for notice in notices:
            logger.info("INFO: %s", notice)
        return cls(size=size, notices=tuple(notices))


__all__ = [
    "ConfigurationOutOfRange",
    "DEFAULT_TAPE_SIZE",
    "MAX_RUN_TAPE_SIZE",
    "MAX_TAPE_SIZE",
    "MIN_TAPE_SIZE",
    "TapeConfig",
    "validate_tape_size",
]
