"""Nesting and ordering limit models for caltodo.

This module provides a Pydantic model for the hierarchy depth limits and the
daily task cap, with TOML file loading support.
"""

from pathlib import Path
from typing import Optional
import sys
import logging

# Use tomllib from stdlib in Python 3.11+, fallback to tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import BaseModel, Field

from caltodo.config import Config

logger = logging.getLogger(__name__)


class LimitsConfig(BaseModel):
    """Limits enforced by the ordering and hierarchy services.

    Attributes:
        max_tasks_per_day: Tasks a user may hold on a single date.
        max_task_nesting_depth: Deepest task level (root = 0).
        max_document_nesting_depth: Deepest document level (root = 0).
    """

    max_tasks_per_day: int = Field(default=50, ge=1, le=10000)
    max_task_nesting_depth: int = Field(default=2, ge=0, le=10)
    max_document_nesting_depth: int = Field(default=5, ge=0, le=20)

    @classmethod
    def from_toml_file(cls, path: Optional[Path] = None) -> 'LimitsConfig':
        """Load limits from a TOML file with fallback to defaults.

        Args:
            path: Path to the TOML file. If None, defaults to
                  ~/.caltodo/limits.toml.

        Returns:
            LimitsConfig loaded from the ``[limits]`` table or with defaults.
        """
        if path is None:
            path = Path.home() / ".caltodo" / "limits.toml"

        if not path.exists():
            logger.info(f"Limits config not found at {path}. Using defaults.")
            return cls()

        with open(path, 'rb') as f:
            data = tomllib.load(f)

        return cls(**data.get('limits', {}))

    @classmethod
    def from_config(cls, config: Config) -> 'LimitsConfig':
        """Build limits from the INI/environment backed Config."""
        return cls(**config.get_limits_config())
