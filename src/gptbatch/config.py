"""
Client configuration and environment resolution.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from platformdirs import user_cache_dir

APP_NAME = "gptbatch"
APP_AUTHOR = "gptbatch"

API_KEY_ENV_VAR = "OPENAI_API_KEY"
CACHE_DIR_ENV_VAR = "GPTBATCH_CACHE_DIR"

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_SEED = 420


@dataclass(frozen=True)
class CongestionConfig:
    """
    Tuning knobs of the congestion controller.

    Parameters
    ----------
    min_backoff : float
        Backoff floor in seconds.
    max_backoff : float
        Backoff ceiling in seconds.
    backoff_factor : float
        Multiplier applied on throttling, divisor applied on recovery.
    success_threshold : int
        Consecutive successes required before the backoff decreases.
    max_attempts : int
        Attempts allowed per request while throttled; ``0`` means unlimited.
    """

    min_backoff: float = 1.0
    max_backoff: float = 60.0
    backoff_factor: float = 2.0
    success_threshold: int = 10
    max_attempts: int = 0

    def __post_init__(self) -> None:
        if self.min_backoff <= 0:
            raise ValueError("min_backoff must be positive")
        if self.max_backoff < self.min_backoff:
            raise ValueError("max_backoff must be greater than or equal to min_backoff")
        if self.backoff_factor <= 1:
            raise ValueError("backoff_factor must be greater than 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be at least 1")
        if self.max_attempts < 0:
            raise ValueError("max_attempts cannot be negative")


@dataclass(frozen=True)
class ClientConfig:
    """
    Configuration shared by a client and its batch sessions.

    Parameters
    ----------
    base_url : str
        Remote API base URL.
    model : str
        Default model written into shard lines.
    seed : int
        Default sampling seed written into shard lines.
    cache_dir : Path | None
        Directory of the persisted job/artifact cache; ``None`` disables it.
    timeout : float
        Per-request timeout in seconds.
    congestion : CongestionConfig
        Congestion controller settings.
    """

    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    seed: int = DEFAULT_SEED
    cache_dir: Path | None = None
    timeout: float = 60.0
    congestion: CongestionConfig = field(default_factory=CongestionConfig)


def resolve_api_key(api_key: str | None = None) -> str:
    """
    Resolve the API token from the argument, the environment or a ``.env`` file.

    Parameters
    ----------
    api_key : str | None, optional
        Explicit API key.

    Returns
    -------
    str
        API key.

    Raises
    ------
    ValueError
        If no API key can be found.
    """
    if api_key:
        return api_key
    load_dotenv()
    env_key = os.getenv(API_KEY_ENV_VAR)
    if not env_key:
        raise ValueError(
            f"API key not found. Either set {API_KEY_ENV_VAR} in the environment or provide it through the api_key parameter."
        )
    return env_key


def default_cache_dir() -> Path:
    """Return the per-user cache directory for persisted jobs and artifacts."""
    return Path(user_cache_dir(APP_NAME, APP_AUTHOR))


def resolve_cache_dir(*, path: Path | str | None = None) -> Path | None:
    """
    Resolve the persisted cache directory.

    Parameters
    ----------
    path : Path | str | None, optional
        Explicit cache directory.

    Returns
    -------
    Path | None
        Resolved directory, or ``None`` when persisted caching is disabled.
    """
    if path is not None:
        return Path(path).expanduser().resolve()

    env_path = os.getenv(CACHE_DIR_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser().resolve()

    return None
