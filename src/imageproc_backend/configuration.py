from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .errors import ConfigurationError

CONFIG_PATH = Path(__file__).resolve().parent / "defaults.yaml"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# environment variable -> (dotted config key, caster)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "AWS_BUCKET_NAME": ("storage.bucket", str),
    "AWS_REGION": ("storage.region", str),
    "AWS_ACCESS_KEY_ID": ("storage.access_key_id", str),
    "AWS_SECRET_ACCESS_KEY": ("storage.secret_access_key", str),
    "REDIS_URL": ("queue.redis_url", str),
    "QUEUE_NAME": ("queue.name", str),
    "WORKER_IDLE_INTERVAL": ("worker.idle_interval", float),
    "WORKER_ERROR_INTERVAL": ("worker.error_interval", float),
    "RUN_WORKER_IN_API": ("worker.run_in_api", _as_bool),
    "JOBS_DB_PATH": ("database.path", str),
    "LOG_LEVEL": ("logging.level", str),
}

RESIZE_FILTERS = {"nearest", "bilinear", "bicubic", "lanczos"}


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def _env_overrides(environ: Mapping[str, str]) -> DictConfig:
    overrides = OmegaConf.create({})
    for name, (key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = cast(raw)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from exc
        OmegaConf.update(overrides, key, value)
    return overrides


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    use_dotenv: bool = True,
) -> DictConfig:
    """
    Build the runtime configuration.

    Layers, lowest priority first: packaged defaults.yaml, environment variables
    (after loading ``.env`` when ``use_dotenv`` is set), then explicit overrides.
    The result is struct-locked so misspelled keys fail loudly.
    """
    if use_dotenv:
        load_dotenv()
    if environ is None:
        environ = os.environ

    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)
    env_config = _env_overrides(environ)

    try:
        merged = OmegaConf.merge(base, env_config, OmegaConf.create(overrides or {}))
    except Exception as exc:  # omegaconf raises several error types for bad keys
        raise ConfigurationError(f"Invalid configuration override: {exc}") from exc

    settings = DictConfig(merged)
    validate_settings(settings)
    return settings


def validate_settings(settings: DictConfig) -> None:
    """Reject configurations no job could ever succeed with."""
    transform = settings.transform
    if not 0.0 <= float(transform.tint_intensity) <= 1.0:
        raise ConfigurationError("transform.tint_intensity must be within [0, 1]")
    if not 1 <= int(transform.jpeg_quality) <= 100:
        raise ConfigurationError("transform.jpeg_quality must be within [1, 100]")
    if int(transform.default_width) <= 0:
        raise ConfigurationError("transform.default_width must be positive")
    if str(transform.resize_filter) not in RESIZE_FILTERS:
        raise ConfigurationError(
            f"transform.resize_filter must be one of {', '.join(sorted(RESIZE_FILTERS))}"
        )
    if float(settings.worker.idle_interval) < 0 or float(settings.worker.error_interval) < 0:
        raise ConfigurationError("worker intervals must not be negative")
