"""
Token counting and usage tracking.

Holds the per-response token counts reported in the session logs.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class TokenUsage:
    """Token usage for a single assistant response.

    Cache tokens are carried for completeness but do not count toward
    plan limits or estimated cost.
    """
    input_tokens: int
    output_tokens: int
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Tokens counted against limits (input + output)."""
        return self.input_tokens + self.output_tokens

    @classmethod
    def from_mapping(cls, usage: Mapping[str, Any]) -> "TokenUsage":
        """Build from a log ``usage`` object, treating missing or null counts as zero."""
        return cls(
            input_tokens=_as_count(usage.get("input_tokens")),
            output_tokens=_as_count(usage.get("output_tokens")),
            cache_creation_input_tokens=_as_count(usage.get("cache_creation_input_tokens")),
            cache_read_input_tokens=_as_count(usage.get("cache_read_input_tokens")),
        )


def _as_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    # json accepts NaN, Infinity and overflowing literals like 1e400
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(value))
