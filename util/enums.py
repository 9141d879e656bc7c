# util/enums.py
from enum import Enum


class Color(str, Enum):
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    BOLD = "\033[1m"

    def __str__(self):
        return self.value


class Environment(str, Enum):
    DEV = "dev"
    PROD = "prod"


class OperatingMode(str, Enum):
    # STANDARD runs the full retry chain; FAST only repairs JSON and citation format.
    STANDARD = "standard"
    FAST = "fast"


class OracleKind(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class PayloadTier(str, Enum):
    FULL = "full"
    NO_ALIASES = "no_aliases"
    NO_ALIASES_NO_MODERN = "no_aliases_no_modern"


class ConfidenceBand(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
