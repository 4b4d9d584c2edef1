"""
Engine configuration parameters.

Defines operational defaults for groups, bidding, ranking and storage.
Values can be overridden through CHITFUND_* environment variables or a
dotenv file passed to `load_config`.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from chitfund.core.errors import ValidationError

ENV_PREFIX = "CHITFUND_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class EngineConfig:
    """Engine-wide configuration parameters"""

    # Group parameters
    default_grace_period_days: int = 3  # Used when a group does not set one
    min_members_to_activate: int = 2  # Roster size required to go Active

    # Bidding parameters
    require_increasing_bids: bool = False  # Each bid must beat the current highest
    min_bid_increment: int = 1  # Step over the current highest (strict mode only)

    # Ranking
    ranking_on_payment: bool = True  # Recalculate group rankings after each payment

    # Storage / logging
    data_dir: Path = field(default_factory=lambda: Path("data"))
    db_name: str = "chitfund.db"
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    log_to_file: bool = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        if not isinstance(level, int):
            raise ValidationError(f"Unknown log level: {self.log_level}")
        return level

    def ensure_dirs(self) -> None:
        """Create data (and, when file logging is on, log) directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        if self.log_to_file:
            self.log_dir.mkdir(exist_ok=True, parents=True)


def _coerce(name: str, raw: str, default):
    """Convert an environment string to the type of the field default."""
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValidationError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got {raw!r}")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(
                f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}"
            ) from None
    if isinstance(default, Path):
        return Path(raw).expanduser()
    return raw


def load_config(env_file: Optional[str] = None) -> EngineConfig:
    """
    Load configuration from environment (and optional dotenv file).

    Args:
        env_file: Optional path to a dotenv file. Variables already present
            in the process environment take precedence.

    Returns:
        EngineConfig instance
    """
    if env_file:
        load_dotenv(env_file, override=False)

    config = EngineConfig()
    for f in fields(EngineConfig):
        raw = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is None:
            continue
        setattr(config, f.name, _coerce(f.name, raw, getattr(config, f.name)))

    if config.default_grace_period_days < 0:
        raise ValidationError("default_grace_period_days cannot be negative")
    if config.min_members_to_activate < 1:
        raise ValidationError("min_members_to_activate must be at least 1")
    if config.min_bid_increment < 1:
        raise ValidationError("min_bid_increment must be at least 1")

    return config
