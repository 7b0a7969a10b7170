from enum import Enum


class Horizon(str, Enum):
    SHORT_TERM = "short-term"
    LONG_TERM = "long-term"


class VaultStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
