"""Loading of account configuration files.

Each account is described by one file in the provider's configuration
directory. JSON, TOML and YAML are accepted, selected by file extension.
"""

import json
import logging
import tomllib
from pathlib import Path
from typing import Any

import yaml

from cloud_agent.constants import CONFIG_FILE_EXTENSIONS

logger = logging.getLogger(__name__)


class ConfigFileError(Exception):
    """Exception raised when a configuration file cannot be read or parsed."""


def load_config_file(path: Path) -> dict[str, Any]:
    """Read and parse a configuration file.

    Args:
        path: Path to a .json, .toml, .yaml or .yml file.

    Returns:
        The parsed document as a dictionary.

    Raises:
        ConfigFileError: If the file cannot be read, parsed, or is not a mapping.
    """
    suffix = path.suffix.lower()
    if suffix not in CONFIG_FILE_EXTENSIONS:
        raise ConfigFileError(f"unsupported config file type '{suffix}' ({path})")

    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigFileError(f"unable to read {path}: {e}") from e

    try:
        if suffix == ".json":
            data = json.loads(raw)
        elif suffix == ".toml":
            data = tomllib.loads(raw.decode("utf-8"))
        else:
            data = yaml.safe_load(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError, yaml.YAMLError) as e:
        raise ConfigFileError(f"unable to parse {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigFileError(f"invalid encoding in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigFileError(f"{path} does not contain a configuration mapping")

    return data


def discover_config_files(conf_dir: Path) -> list[Path]:
    """List configuration files in a directory, sorted by name.

    Subdirectories and files with unrecognized extensions are ignored.
    """
    if not conf_dir.is_dir():
        raise ConfigFileError(f"config directory {conf_dir} does not exist")

    files = [
        entry
        for entry in sorted(conf_dir.iterdir())
        if entry.is_file() and entry.suffix.lower() in CONFIG_FILE_EXTENSIONS
    ]
    logger.debug("Found %d config files in %s", len(files), conf_dir)
    return files
