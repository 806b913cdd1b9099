"""Active configuration, held in a context variable.

Each asyncio task and thread sees the configuration of the context it was
started from; ``with_context`` overrides apply only inside their block.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from loguru import logger

from src.accounts.runtime.config.config_data import ConfigData
from src.accounts.runtime.config.config_template import load_templated_yaml
from src.accounts.runtime.config.settings import EnvironmentVariables


def _load_startup_config() -> ConfigData:
    settings = EnvironmentVariables()
    path = Path(settings.config_path)
    if not path.exists():
        logger.warning("{} not found; using built-in configuration defaults", path)
        return ConfigData()
    return load_templated_yaml(path, settings.environment)


_config: ContextVar[ConfigData] = ContextVar("accounts_config", default=_load_startup_config())


def get_config() -> ConfigData:
    return _config.get()


def set_config(config: ConfigData) -> None:
    """Replace the configuration for the current context."""
    _config.set(config)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@contextmanager
def with_context(override: ConfigData | None = None) -> Iterator[ConfigData]:
    """Layer ``override`` on the active configuration for the duration of the block.

    Only fields passed explicitly when building ``override`` change; sections
    are merged field by field.

    Example:
        with with_context(ConfigData(verification=VerificationConfig(max_per_day=1))):
            assert get_config().verification.max_per_day == 1
    """
    if override is None:
        yield get_config()
        return
    if not isinstance(override, ConfigData):
        raise ValueError(f"override must be ConfigData or None, got {type(override).__name__}")

    merged = ConfigData.model_validate(
        _deep_merge(get_config().model_dump(), override.model_dump(exclude_unset=True))
    )
    token = _config.set(merged)
    try:
        yield merged
    finally:
        _config.reset(token)
