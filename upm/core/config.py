# upm/core/config.py

import copy
import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any, Dict

import jsonschema
from jsonschema import Draft7Validator

from upm.core.errors import ConfigError
from upm.core.io import atomic_write_json

# Load our JSON Schema as a Python dict
SCHEMA = json.loads(resources.files("upm.schema").joinpath("config.v1.schema.json").read_text(encoding="utf-8"))

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "upm" / "config.json"
DEFAULT_STATE_DIR = Path.home() / ".local" / "state" / "upm"

REQUIRED_SECTIONS = ("_metadata", "PackageManagers", "Advanced", "PackageManagerInstaller")

# grab the un-hooked "properties" validator
_default_properties = Draft7Validator.VALIDATORS["properties"]


def _set_defaults(validator, properties, instance, schema):
    """
    jsonschema hook: whenever a property has a 'default', insert a copy of it,
    then delegate to the original Draft7 `properties` validator.
    """
    if not isinstance(instance, dict):
        return
    for prop, subschema in properties.items():
        if "default" in subschema:
            # copy so merging user values never mutates SCHEMA
            instance.setdefault(prop, copy.deepcopy(subschema["default"]))

    yield from _default_properties(validator, properties, instance, schema)


_InjectingValidator = jsonschema.validators.extend(Draft7Validator, {"properties": _set_defaults})


def _deep_update(base: dict, updates: dict) -> None:
    """
    Recursively update base with updates (mutates base). Mappings merge,
    every other value replaces wholesale.
    """
    for k, v in updates.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_update(base[k], v)
        else:
            base[k] = copy.deepcopy(v)


def _fill_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    for _ in _InjectingValidator(SCHEMA).iter_errors(config):
        pass
    return config


def build_default_config() -> Dict[str, Any]:
    """The configuration a fresh install starts from: every schema default."""
    return _fill_defaults({})


def merge_config(user_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Overlay ``user_config`` on the defaults and validate the result.

    Raises:
        ConfigError: the merged configuration is invalid.
    """
    for section in REQUIRED_SECTIONS:
        if section not in user_config:
            log.warning(f"Configuration section '{section}' missing; using defaults.")

    config = build_default_config()
    _deep_update(config, user_config)
    # Sections the user added partially still need their nested defaults
    _fill_defaults(config)
    try:
        Draft7Validator(SCHEMA).validate(config)
    except jsonschema.ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e.message}") from e
    return config


def load_config(config_path: Path = DEFAULT_CONFIG_PATH, create_if_missing: bool = True) -> Dict[str, Any]:
    """
    Loads and validates configuration against our JSON Schema.
    Fills in any missing properties with the schema's own default values.
    A missing file is created from the defaults.
    """
    log.info(f"Attempting to load configuration from: {config_path}")

    if not config_path.is_file():
        log.warning(f"No config at {config_path}; using schema defaults.")
        if create_if_missing:
            generate_default_config(config_path)
        return build_default_config()

    try:
        user_config = json.loads(config_path.read_text(encoding="utf-8-sig"))
        if not isinstance(user_config, dict):
            raise jsonschema.ValidationError("top level must be a JSON object")
        Draft7Validator(SCHEMA).validate(user_config)
    except json.JSONDecodeError as e:
        log.error(f"Error parsing JSON: {e}")
        log.warning("Using schema defaults only.")
        return build_default_config()
    except jsonschema.ValidationError as e:
        log.error(f"Configuration validation error: {e.message}")
        log.warning("Falling back to schema defaults.")
        return build_default_config()

    config = merge_config(user_config)
    log.info("Configuration loaded and validated.")
    return config


def generate_default_config(config_path: Path = DEFAULT_CONFIG_PATH, force: bool = False) -> bool:
    if config_path.is_file() and not force:
        log.info("Config already exists; skipping.")
        return True

    try:
        atomic_write_json(config_path, build_default_config())
        log.info(f"Default configuration file created at {config_path}.")
        return True
    except OSError as e:
        log.error(f"Failed to write default config: {e}")
        return False


def package_manager_settings(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    return config.get("PackageManagers", {}).get(name, {})


def advanced_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    return config.get("Advanced", {})


def resolve_directory(config: Dict[str, Any], key: str, fallback: Path) -> Path:
    """An `Advanced` directory setting, or ``fallback`` when unset."""
    value = advanced_settings(config).get(key)
    return Path(value).expanduser() if value else fallback
