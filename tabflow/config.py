"""
Runtime configuration for tabflow pipelines.
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict

ENV_PREFIX = "TABFLOW_"
EVENT_LEVELS = ("first", "second")


@dataclass
class PipelineConfig:
    """Settings shared by splitting, resampling, model engines and logging."""
    seed: int = 42
    prop: float = 0.75
    folds: int = 10
    repeats: int = 1
    n_jobs: int = 1
    log_dir: str = "logs"
    log_level: str = "INFO"
    event_level: str = "first"

    def __post_init__(self):
        if not 0 < self.prop < 1:
            raise ValueError(f"prop must be in (0, 1), got {self.prop}")
        if self.folds < 2:
            raise ValueError(f"folds must be at least 2, got {self.folds}")
        if self.repeats < 1:
            raise ValueError(f"repeats must be at least 1, got {self.repeats}")
        if self.event_level not in EVENT_LEVELS:
            raise ValueError(f"event_level must be one of {EVENT_LEVELS}, got '{self.event_level}'")
        self.log_level = self.log_level.upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"log_level must be a logging level name, got '{self.log_level}'")

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """
        Build a config from TABFLOW_* environment variables.
        Explicit keyword overrides take precedence over the environment.
        """
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            try:
                values[f.name] = f.type(raw)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: '{raw}'")
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)