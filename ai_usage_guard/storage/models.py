"""
Data models for storage layer.

Defines the records produced from the local session logs.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ai_usage_guard.core.clock import ensure_utc
from ai_usage_guard.core.token_counter import TokenUsage


@dataclass(frozen=True)
class UsageEvent:
    """Immutable record of one observed unit of consumption.

    ``timestamp`` is parsed once when the log line is read; every time
    filter downstream uses it rather than ``raw_timestamp``.
    """
    timestamp: datetime  # Timezone-aware, UTC
    usage: TokenUsage
    model: Optional[str] = None
    cwd: Optional[str] = None  # Working directory, identifies the project
    session_id: Optional[str] = None
    raw_timestamp: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def input_tokens(self) -> int:
        return self.usage.input_tokens

    @property
    def output_tokens(self) -> int:
        return self.usage.output_tokens

    @property
    def total_tokens(self) -> int:
        return self.usage.total_tokens


@dataclass(frozen=True)
class UsageSession:
    """Anonymised usage record handed to the backend sync client."""
    timestamp: str
    tokens_input: int
    tokens_output: int
    model: str
    project_hash: str
