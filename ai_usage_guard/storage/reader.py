"""
Session log reader.

Reads the append-only, per-session JSONL files written under
``~/.claude/projects`` and turns every line that carries token usage into
a UsageEvent. Corrupt lines and unreadable files are skipped.
"""

import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Union

from ai_usage_guard.core.clock import Clock, SystemClock, ensure_utc, parse_iso_timestamp
from ai_usage_guard.core.token_counter import TokenUsage

from .models import UsageEvent, UsageSession

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(days=7)
DEFAULT_MAX_WORKERS = 8


def parse_log_line(line: str, session_id: Optional[str] = None) -> Optional[UsageEvent]:
    """Parse one JSONL line into a UsageEvent.

    Only JSON objects with a ``message.usage`` object and a valid
    timestamp produce an event; everything else yields None.
    """
    line = line.strip()
    if not line:
        return None
    try:
        entry = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(entry, dict):
        return None

    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None

    timestamp = parse_iso_timestamp(entry.get("timestamp"))
    if timestamp is None:
        return None

    model = message.get("model")
    cwd = entry.get("cwd")
    return UsageEvent(
        timestamp=timestamp,
        usage=TokenUsage.from_mapping(usage),
        model=model if isinstance(model, str) else None,
        cwd=cwd if isinstance(cwd, str) and cwd else None,
        session_id=session_id,
        raw_timestamp=entry.get("timestamp"),
    )


def parse_jsonl_file(file_path: Path) -> List[UsageEvent]:
    """Parse a JSONL session file, skipping lines without usage data."""
    events: List[UsageEvent] = []
    session_id = file_path.stem
    try:
        with open(file_path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                event = parse_log_line(line, session_id=session_id)
                if event is not None:
                    events.append(event)
    except OSError as e:
        logger.debug("Could not read %s: %s", file_path, e)
    return events


def find_jsonl_files(root: Path) -> List[Path]:
    """Recursively list ``*.jsonl`` files below ``root``.

    Directories that cannot be listed are skipped.
    """
    files: List[Path] = []
    try:
        children = list(root.iterdir())
    except OSError as e:
        logger.debug("Could not list %s: %s", root, e)
        return files

    for child in children:
        try:
            if child.is_dir():
                files.extend(find_jsonl_files(child))
            elif child.name.endswith(".jsonl"):
                files.append(child)
        except OSError:
            continue
    return files


class UsageLogRepository:
    """Read access to the local session logs.

    Files whose modification time is older than the staleness window are
    not opened at all. Remaining files are parsed concurrently, one read
    per file, and merged by concatenation.
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        staleness: timedelta = DEFAULT_STALENESS,
        clock: Optional[Clock] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        """Initialize the repository.

        Args:
            data_dir: Root of the session log tree
            staleness: Files untouched for longer than this are skipped
            clock: Time source, defaults to the system clock
            max_workers: Upper bound on concurrent file reads
        """
        self.data_dir = Path(data_dir).expanduser()
        self.staleness = staleness
        self.clock = clock or SystemClock()
        self.max_workers = max_workers

    def get_recent_events(self) -> List[UsageEvent]:
        """Return every usage event from recently modified log files.

        A missing data directory yields an empty list.
        """
        if not self.data_dir.is_dir():
            logger.debug("Session log directory %s does not exist", self.data_dir)
            return []

        all_files = find_jsonl_files(self.data_dir)
        recent_files = self._filter_recent(all_files)
        skipped = len(all_files) - len(recent_files)

        if not recent_files:
            logger.debug("No recent session logs (skipped %d stale)", skipped)
            return []

        workers = max(1, min(self.max_workers, len(recent_files)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            per_file = list(executor.map(parse_jsonl_file, recent_files))

        events = [event for file_events in per_file for event in file_events]
        logger.debug(
            "Files processed: %d, skipped (old): %d, events: %d",
            len(recent_files), skipped, len(events),
        )
        return events

    def get_recent_sessions(
        self,
        since: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[UsageSession]:
        """Return anonymised usage records for backend sync, newest first.

        Args:
            since: Only include events strictly after this instant
            limit: Maximum number of records to return
        """
        events = self.get_recent_events()
        return build_usage_sessions(events, since=since, limit=limit)

    def _filter_recent(self, files: List[Path]) -> List[Path]:
        cutoff = self.clock.now().timestamp() - self.staleness.total_seconds()
        recent: List[Path] = []
        for path in files:
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if mtime >= cutoff:
                recent.append(path)
        return recent


def hash_project_path(cwd: Optional[str]) -> str:
    """Hash a project path for privacy (first 16 hex chars of SHA-256)."""
    if not cwd:
        return "unknown"
    return hashlib.sha256(cwd.encode("utf-8")).hexdigest()[:16]


def build_usage_sessions(
    events: List[UsageEvent],
    since: Optional[datetime] = None,
    limit: int = 500,
) -> List[UsageSession]:
    """Convert events into sync records, newest first, capped at ``limit``."""
    since_utc = ensure_utc(since) if since is not None else None
    selected = [e for e in events if since_utc is None or e.timestamp > since_utc]
    selected.sort(key=lambda e: e.timestamp, reverse=True)

    sessions: List[UsageSession] = []
    for event in selected[:max(0, limit)]:
        sessions.append(UsageSession(
            timestamp=event.raw_timestamp or event.timestamp.isoformat(),
            tokens_input=event.input_tokens,
            tokens_output=event.output_tokens,
            model=event.model or "unknown",
            project_hash=hash_project_path(event.cwd),
        ))
    return sessions
