"""Load ``config.yaml``, filling ``${...}`` placeholders from the environment."""

import os
import re
from collections.abc import Mapping
from pathlib import Path

import yaml
from loguru import logger
from pydantic import ValidationError

from src.accounts.runtime.config.config_data import ConfigData
from src.accounts.runtime.config.settings import EnvironmentVariables

_PLACEHOLDER = re.compile(
    r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::(?P<op>[-?])(?P<arg>[^}]*))?\}"
)


def environment_for(env_mode: str, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment with ``<ENV>_``-prefixed variables promoted.

    With ``env_mode="test"``, ``TEST_DATABASE_URL`` stands in for
    ``DATABASE_URL``. ``os.environ`` itself is left alone.
    """
    environ = os.environ if environ is None else environ
    prefix = f"{env_mode.upper()}_"
    resolved = dict(environ)
    for name, value in environ.items():
        if name.startswith(prefix) and len(name) > len(prefix):
            resolved[name[len(prefix):]] = value
    return resolved


def substitute_env_vars(text: str, environ: Mapping[str, str] | None = None) -> str:
    """Fill ``${VAR}``, ``${VAR:-default}`` and ``${VAR:?message}`` placeholders.

    Raises:
        ValueError: A variable without a default is unset
    """
    environ = os.environ if environ is None else environ

    def fill(match: re.Match) -> str:
        name, op, arg = match.group("name", "op", "arg")
        value = environ.get(name)
        if value is not None:
            return value
        if op == "-":
            return arg
        raise ValueError(
            f"Required environment variable {name}: {arg if op == '?' else 'not set'}"
        )

    return _PLACEHOLDER.sub(fill, text)


def load_templated_yaml(file_path: Path, env_mode: str | None = None) -> ConfigData:
    """Parse the ``config:`` mapping of ``file_path`` into ConfigData.

    Raises:
        ValueError: A required variable is unset, the YAML is malformed, or
            it does not describe a valid configuration
        FileNotFoundError: ``file_path`` does not exist
    """
    env_mode = env_mode or EnvironmentVariables().environment
    logger.info("Loading {} for environment {}", file_path, env_mode)
    text = substitute_env_vars(Path(file_path).read_text(), environment_for(env_mode))

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing {file_path}: {e}") from e
    if not isinstance(document, dict):
        raise ValueError(f"{file_path} does not contain a YAML mapping")

    try:
        return ConfigData.model_validate(document.get("config") or {})
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {file_path}: {e}") from e
