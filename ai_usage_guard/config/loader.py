"""
Configuration management and loading.

Handles the plan tier, the session log location and the polling settings.
"""

from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict

import yaml

from .plans import PlanLimits, PlanType, parse_plan_type, resolve_plan_limits


def _default_data_dir() -> Path:
    """Return the directory Claude Code writes its session logs to."""
    return Path.home() / ".claude" / "projects"


@dataclass(frozen=True)
class UsageGuardConfig:
    """Complete usage guard configuration.

    Treated as an immutable input for every aggregation call.
    """
    plan: PlanType = PlanType.MAX5
    data_dir: Path = field(default_factory=_default_data_dir)
    staleness_days: int = 7
    sample_window_minutes: int = 60
    weekly_alert_threshold: float = 90.0
    refresh_interval_seconds: int = 30
    resume_margin_seconds: int = 1

    def __post_init__(self):
        """Validate durations are positive and thresholds are percentages."""
        if self.staleness_days <= 0:
            raise ValueError("staleness_days must be > 0")
        if self.sample_window_minutes <= 0:
            raise ValueError("sample_window_minutes must be > 0")
        if not 0 < self.weekly_alert_threshold <= 100:
            raise ValueError("weekly_alert_threshold must be in (0, 100]")
        if self.refresh_interval_seconds <= 0:
            raise ValueError("refresh_interval_seconds must be > 0")
        if self.resume_margin_seconds < 0:
            raise ValueError("resume_margin_seconds cannot be negative")

    @property
    def limits(self) -> PlanLimits:
        """Ceilings of the configured plan."""
        return resolve_plan_limits(self.plan)

    @property
    def staleness_window(self) -> timedelta:
        return timedelta(days=self.staleness_days)

    @property
    def sample_window(self) -> timedelta:
        return timedelta(minutes=self.sample_window_minutes)

    @property
    def refresh_interval(self) -> timedelta:
        return timedelta(seconds=self.refresh_interval_seconds)

    @property
    def resume_margin(self) -> timedelta:
        return timedelta(seconds=self.resume_margin_seconds)


_INT_KEYS = {
    'staleness_days',
    'sample_window_minutes',
    'refresh_interval_seconds',
    'resume_margin_seconds',
}
_ALLOWED_KEYS = _INT_KEYS | {'plan', 'data_dir', 'weekly_alert_threshold'}


def load_config(path: str) -> UsageGuardConfig:
    """Load and validate usage guard configuration from a YAML file.

    Strict validation ensures a typo never silently falls back to a
    default plan or polling interval.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated UsageGuardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    # An empty file means "all defaults"
    if raw_config is None:
        return UsageGuardConfig()

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - _ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    return _parse_config(raw_config)


def _parse_config(data: Dict[str, Any]) -> UsageGuardConfig:
    """Convert raw YAML values into a UsageGuardConfig.

    Args:
        data: Parsed YAML mapping with only known keys

    Returns:
        Validated UsageGuardConfig

    Raises:
        ValueError: If a value has the wrong type or is out of range
    """
    kwargs: Dict[str, Any] = {}

    if 'plan' in data:
        plan = data['plan']
        if not isinstance(plan, str):
            raise ValueError("'plan' must be a string")
        kwargs['plan'] = parse_plan_type(plan)

    if 'data_dir' in data:
        data_dir = data['data_dir']
        if not isinstance(data_dir, str) or not data_dir.strip():
            raise ValueError("'data_dir' must be a non-empty string")
        kwargs['data_dir'] = Path(data_dir).expanduser()

    for key in _INT_KEYS:
        if key not in data:
            continue
        value = data[key]
        # bool is an int subclass, reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{key}' must be an integer")
        kwargs[key] = value

    if 'weekly_alert_threshold' in data:
        threshold = data['weekly_alert_threshold']
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ValueError("'weekly_alert_threshold' must be a number")
        kwargs['weekly_alert_threshold'] = float(threshold)

    return UsageGuardConfig(**kwargs)


def dump_default_config(path: str) -> UsageGuardConfig:
    """Write the default configuration to a YAML file and return it.

    Raises:
        FileExistsError: If the file already exists
    """
    config_path = Path(path)
    if config_path.exists():
        raise FileExistsError(f"Config file already exists: {path}")

    config = UsageGuardConfig()
    data = asdict(config)
    data['plan'] = config.plan.value
    data['data_dir'] = str(config.data_dir)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return config
