"""
Configuration management for dpmm-clustering.

Loads defaults from environment variables (typically from a .env file).
Uses python-dotenv to load .env automatically.

Usage:
    from dpmm_clustering.config import config

    # Default training hyperparameters
    alpha = config.dpmm.alpha

    # Prediction worker pool
    workers = config.concurrency.max_workers
"""

import os
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


# Try to load .env file if it exists
try:
    from dotenv import load_dotenv

    # Look for .env in project root (parent of src/)
    env_path = Path(__file__).parent.parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)
except ImportError:
    # python-dotenv not installed - will use system environment variables
    pass


_VALID_INITIALIZATIONS = ("ONE_CLUSTER_PER_RECORD", "RANDOM_ASSIGNMENT")
_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def _parse_number(name: str, raw: str, cast):
    try:
        return cast(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a {cast.__name__}, got {raw!r}") from e


@dataclass
class DPMMDefaults:
    """Default hyperparameters used when training parameters are built from config."""
    alpha: float = 1.0
    max_iterations: int = 1000
    initialization: str = "ONE_CLUSTER_PER_RECORD"
    seed: Optional[int] = None

    def __post_init__(self):
        """Validate the loaded values."""
        if not self.alpha > 0:
            raise ValueError(f"DPMM_ALPHA must be > 0, got {self.alpha}")
        if self.max_iterations < 1:
            raise ValueError(
                f"DPMM_MAX_ITERATIONS must be >= 1, got {self.max_iterations}"
            )
        self.initialization = self.initialization.upper()
        if self.initialization not in _VALID_INITIALIZATIONS:
            raise ValueError(
                f"DPMM_INITIALIZATION must be one of {_VALID_INITIALIZATIONS}, "
                f"got {self.initialization!r}"
            )


@dataclass
class ConcurrencyConfig:
    """Worker pool settings for batch prediction."""
    parallelized: bool = True
    max_workers: Optional[int] = None

    def __post_init__(self):
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"DPMM_MAX_WORKERS must be >= 1, got {self.max_workers}")


class Config:
    """
    Application configuration loaded from environment variables.

    Environment variables can be set:
    1. In a .env file in the project root
    2. In the system environment
    3. In a container/deployment environment
    """

    def __init__(self):
        """Load configuration from environment."""
        seed = os.getenv("DPMM_SEED", "")
        max_workers = os.getenv("DPMM_MAX_WORKERS", "")

        self.dpmm = DPMMDefaults(
            alpha=_parse_number("DPMM_ALPHA", os.getenv("DPMM_ALPHA", "1.0"), float),
            max_iterations=_parse_number(
                "DPMM_MAX_ITERATIONS", os.getenv("DPMM_MAX_ITERATIONS", "1000"), int
            ),
            initialization=os.getenv("DPMM_INITIALIZATION", "ONE_CLUSTER_PER_RECORD"),
            seed=_parse_number("DPMM_SEED", seed, int) if seed else None,
        )
        self.concurrency = ConcurrencyConfig(
            parallelized=_parse_bool(
                "DPMM_PARALLELIZED", os.getenv("DPMM_PARALLELIZED", "true")
            ),
            max_workers=(
                _parse_number("DPMM_MAX_WORKERS", max_workers, int) if max_workers else None
            ),
        )
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()


# Global config instance
config = Config()
