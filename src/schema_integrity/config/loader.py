"""Configuration loading for schema-integrity."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from schema_integrity.config.models import IntegrityConfig

DEFAULT_CONFIG_NAME = "schema-integrity.toml"


def load_integrity_config(config_path: Path | str | None = None) -> IntegrityConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to the config file (default:
            ``schema-integrity.toml`` in the current directory).

    Returns:
        IntegrityConfig with ``project_root`` defaulting to the directory
        holding the config file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_NAME
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Integrity config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_NAME} with at least a [database] section."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    project_root = data.pop("project_root", None)
    root = Path(project_root) if project_root else config_path.parent
    if not root.is_absolute():
        root = config_path.parent / root

    try:
        return IntegrityConfig(project_root=root, **data)
    except ValidationError as e:
        raise ValueError(f"Invalid config in {config_path}:\n{e}") from e
