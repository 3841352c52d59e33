"""Shared test fixtures."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from ai_usage_guard.core.token_counter import TokenUsage
from ai_usage_guard.storage.models import UsageEvent

# Wednesday; the UTC week runs from Sunday 2026-02-15 to Sunday 2026-02-22
NOW = datetime(2026, 2, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_event():
    """Factory for UsageEvent records."""
    def _make(
        timestamp: datetime,
        input_tokens: int = 0,
        output_tokens: int = 0,
        model: Optional[str] = "claude-sonnet-4-6",
        cwd: Optional[str] = None,
    ) -> UsageEvent:
        return UsageEvent(
            timestamp=timestamp,
            usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
            model=model,
            cwd=cwd,
        )
    return _make


def log_entry(
    timestamp: str,
    input_tokens: int = 100,
    output_tokens: int = 50,
    model: str = "claude-sonnet-4-6",
    cwd: Optional[str] = "/home/dev/project-a",
) -> Dict[str, Any]:
    """An assistant log line as Claude Code writes it."""
    entry: Dict[str, Any] = {
        "type": "assistant",
        "timestamp": timestamp,
        "message": {
            "role": "assistant",
            "model": model,
            "usage": {
                "input_tokens": input_tokens,
                "cache_creation_input_tokens": 500,
                "cache_read_input_tokens": 2000,
                "output_tokens": output_tokens,
            },
        },
    }
    if cwd is not None:
        entry["cwd"] = cwd
    return entry


def write_jsonl(path: Path, lines: List[Any]) -> Path:
    """Write dicts as JSON lines and strings verbatim."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line if isinstance(line, str) else json.dumps(line))
            f.write("\n")
    return path
