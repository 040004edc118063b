"""
Configuration for fsbridge.

A TOML file describes the logging setup and, optionally, one local and one
FTP backend. Values can reference shared paths declared in [paths.variables]
and every key can be overridden from the environment.

Example fsbridge.toml:

    [paths.variables]
    data = "/srv/data"

    [logging]
    level = "info"
    file_enabled = true
    log_dir = "${data}/logs"

    [local]
    root = "${data}/files"
    disallow_links = false
    skip_links = true

    [local.permissions.dir]
    public = "0o775"

    [ftp]
    host = "ftp.example.com"
    username = "me"
    root = "/upload"
    perm_public = "0755"

Usage:
    from fsbridge.config import load_config, create_adapter

    config = load_config()                  # search the default locations
    config = load_config("fsbridge.toml")   # or an explicit file
    adapter = create_adapter("ftp")

    # Environment override: FSBRIDGE_FTP_PASSWORD=secret
"""

import os
import re
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from fsbridge.adapters.base import PermissionMap, StorageAdapter
from fsbridge.adapters.ftp import FtpAdapter, FtpConfig, TransferMode
from fsbridge.adapters.local import LinkHandling, LocalAdapter, LocalConfig
from fsbridge.logger import get_logger, init_logging

logger = get_logger(__name__)

CONFIG_FILENAME = "fsbridge.toml"

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Environment prefix -> TOML section
ENV_SECTIONS = {
    "FSBRIDGE_LOGGING_": "logging",
    "FSBRIDGE_LOCAL_": "local",
    "FSBRIDGE_FTP_": "ftp",
}

_VARIABLE = re.compile(r'\$\{([^}]+)\}')

_TRUE_VALUES = ("true", "yes", "1")
_FALSE_VALUES = ("false", "no", "0")

# [ftp] keys by conversion
_FTP_MODE_KEYS = ("perm_private", "perm_public")
_FTP_INT_KEYS = ("port", "connect_timeout")
_FTP_BOOL_KEYS = ("use_tls", "passive", "manual_recursion", "use_utf8")


# ============================================================================
# PATH VARIABLES
# ============================================================================

def _expand_path_variables(value: Any, variables: Dict[str, str], max_depth: int = 10) -> Any:
    """
    Replace ${name} references in strings, walking into dicts and lists.

    References inside variable values are followed up to max_depth levels;
    unknown names are left as written.

    Example:
        >>> _expand_path_variables({"root": "${data}/x"}, {"home": "/srv", "data": "${home}/data"})
        {'root': '/srv/data/x'}
    """
    if max_depth <= 0:
        raise ValueError("Maximum recursion depth reached in path variable expansion")

    if isinstance(value, dict):
        return {key: _expand_path_variables(item, variables, max_depth) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_path_variables(item, variables, max_depth) for item in value]
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            logger.warning(f"Unknown path variable: ${{{name}}}")
            return match.group(0)
        return str(_expand_path_variables(variables[name], variables, max_depth - 1))

    return _VARIABLE.sub(substitute, value)


def _extract_path_variables(config_dict: Dict[str, Any]) -> Dict[str, str]:
    """Resolved [paths.variables] table; plain values first, then references."""
    declared = config_dict.get("paths", {}).get("variables", {})

    resolved: Dict[str, str] = {}
    for name, value in sorted(declared.items(), key=lambda item: '${' in str(item[1])):
        resolved[name] = _expand_path_variables(value, {**declared, **resolved})

    if resolved:
        logger.debug(f"Resolved path variables: {sorted(resolved)}")
    return resolved


# ============================================================================
# CONFIG OBJECTS
# ============================================================================

@dataclass
class LoggingConfig:
    """The [logging] section, handed to init_logging()."""
    level: str = "WARNING"
    console_enabled: bool = True
    file_enabled: bool = False
    log_dir: str = "logs"

    def __post_init__(self):
        level = str(self.level).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.level}. Must be one of {list(LOG_LEVELS)}")
        self.level = level


@dataclass
class Config:
    """Loaded configuration. Backend sections are None when absent."""
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    local: Optional[LocalConfig] = None
    ftp: Optional[FtpConfig] = None

    def __repr__(self) -> str:
        # No credentials in logs
        return (
            f"Config(log_level={self.logging.level}, "
            f"local_root={self.local.root if self.local else None!r}, "
            f"ftp_host={self.ftp.host if self.ftp else None!r})"
        )


_config: Optional[Config] = None


# ============================================================================
# LOADING
# ============================================================================

def _find_config_file(config_path: Optional[Path] = None) -> Path:
    """
    Locate the configuration file.

    An explicit path must exist. Otherwise the first existing candidate wins:
    FSBRIDGE_CONFIG, ./fsbridge.toml, ~/.fsbridge/fsbridge.toml.
    """
    if config_path:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return config_path

    candidates = []
    env_path = os.getenv("FSBRIDGE_CONFIG")
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(Path(CONFIG_FILENAME))
    candidates.append(Path.home() / ".fsbridge" / CONFIG_FILENAME)

    for candidate in candidates:
        if candidate.exists():
            return candidate

    if env_path:
        logger.warning(f"FSBRIDGE_CONFIG points to non-existent file: {env_path}")

    raise FileNotFoundError(
        "No configuration file found. Searched: "
        + ", ".join(str(candidate) for candidate in candidates)
    )


def _apply_env_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge FSBRIDGE_<SECTION>_<KEY> variables into the raw config dict.

    Values stay strings here and are converted by the section builders, so
    FSBRIDGE_FTP_PERM_PUBLIC=0755 keeps its octal meaning.

    Examples:
        FSBRIDGE_LOGGING_LEVEL=DEBUG -> logging.level
        FSBRIDGE_LOCAL_ROOT=/srv/data -> local.root
        FSBRIDGE_FTP_USE_TLS=true -> ftp.use_tls
    """
    for name, value in os.environ.items():
        for prefix, section in ENV_SECTIONS.items():
            if name.startswith(prefix):
                key = name[len(prefix):].lower()
                config_dict.setdefault(section, {})[key] = value
                logger.debug(f"Applied env override: {name} -> {section}.{key}")
                break

    return config_dict


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {key}: {value!r}")


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid integer for {key}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {key}: {value!r}") from None


def _parse_mode(value: Any, key: str) -> int:
    """
    Permission mode from an int or an octal string.

    Ints are taken as already-converted modes, so TOML needs ``0o755``
    or ``"0755"``. A bare ``755`` is decimal and falls outside 0o777.

    Example:
        >>> oct(_parse_mode("0o750", "perm_public"))
        '0o750'
        >>> oct(_parse_mode("0644", "perm_public"))
        '0o644'
    """
    if isinstance(value, int) and not isinstance(value, bool):
        if not 0 <= value <= 0o777:
            raise ValueError(
                f"Invalid octal mode for {key}: {value!r} (write it as 0o{value} or \"0{value}\")"
            )
        return value
    try:
        mode = int(str(value), 8)
    except ValueError:
        raise ValueError(f"Invalid octal mode for {key}: {value!r}") from None
    if mode > 0o777:
        raise ValueError(f"Invalid octal mode for {key}: {value!r}")
    return mode


def _build_logging_config(section: Dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(
        level=section.get("level", "WARNING"),
        console_enabled=_as_bool(section.get("console_enabled", True), "logging.console_enabled"),
        file_enabled=_as_bool(section.get("file_enabled", False), "logging.file_enabled"),
        log_dir=str(section.get("log_dir", "logs"))
    )


def _build_local_config(section: Dict[str, Any]) -> LocalConfig:
    if "root" not in section:
        raise ValueError("[local] section requires 'root'")

    link_handling = LinkHandling.NONE
    if _as_bool(section.get("skip_links", False), "local.skip_links"):
        link_handling |= LinkHandling.SKIP_LINKS
    if _as_bool(section.get("disallow_links", True), "local.disallow_links"):
        link_handling |= LinkHandling.DISALLOW_LINKS

    permissions = {
        kind: {
            visibility: _parse_mode(mode, f"local.permissions.{kind}.{visibility}")
            for visibility, mode in modes.items()
        }
        for kind, modes in section.get("permissions", {}).items()
    }
    # Rejects unknown kinds and visibilities
    PermissionMap(permissions)

    return LocalConfig(
        root=str(section["root"]),
        link_handling=link_handling,
        permissions=permissions or None
    )


def _build_ftp_config(section: Dict[str, Any]) -> FtpConfig:
    if "host" not in section:
        raise ValueError("[ftp] section requires 'host'")

    unknown = set(section) - {f.name for f in fields(FtpConfig)}
    if unknown:
        raise ValueError(f"Unknown [ftp] keys: {sorted(unknown)}")

    settings: Dict[str, Any] = {}
    for key, value in section.items():
        name = f"ftp.{key}"
        if key in _FTP_MODE_KEYS:
            settings[key] = _parse_mode(value, name)
        elif key in _FTP_INT_KEYS:
            settings[key] = _as_int(value, name)
        elif key in _FTP_BOOL_KEYS:
            settings[key] = _as_bool(value, name)
        elif key == "ignore_passive_address":
            settings[key] = None if value is None else _as_bool(value, name)
        elif key == "transfer_mode":
            settings[key] = TransferMode(str(value).lower())
        elif key == "system_type":
            settings[key] = str(value).lower() if value else None
        else:
            settings[key] = str(value)

    return FtpConfig(**settings)


def _dict_to_config(config_dict: Dict[str, Any]) -> Config:
    """Build a Config from a raw dict; ValueError on invalid sections."""
    local_section = config_dict.get("local")
    ftp_section = config_dict.get("ftp")

    return Config(
        logging=_build_logging_config(config_dict.get("logging", {})),
        local=None if local_section is None else _build_local_config(local_section),
        ftp=None if ftp_section is None else _build_ftp_config(ftp_section)
    )


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        logger.error(f"Failed to parse {path}: {e}")
        raise ValueError(f"Invalid TOML configuration in {path}: {e}") from e


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load, validate and activate a configuration file.

    Path variables are expanded before environment overrides are merged, so
    overrides are taken literally. Logging is reconfigured from the
    [logging] section.

    Args:
        config_path: File to load; None searches the default locations

    Returns:
        The loaded Config, also returned by get_config() from now on

    Raises:
        FileNotFoundError: If no file is found
        ValueError: If the file is not valid TOML or holds invalid values
    """
    global _config

    path = _find_config_file(Path(config_path) if config_path else None)
    logger.info(f"Loading configuration from: {path}")

    config_dict = _read_toml(path)

    try:
        variables = _extract_path_variables(config_dict)
        if variables:
            config_dict = _expand_path_variables(config_dict, variables)
    except ValueError as e:
        raise ValueError(f"Path variable expansion failed: {e}") from e

    config_dict = _apply_env_overrides(config_dict)

    try:
        config = _dict_to_config(config_dict)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid configuration in {path}: {e}")
        raise ValueError(f"Configuration validation failed: {e}") from e

    _config = config
    init_logging(
        level=config.logging.level,
        log_dir=config.logging.log_dir,
        console=config.logging.console_enabled,
        file=config.logging.file_enabled
    )
    logger.info(f"Configuration loaded: {config}")

    return config


def get_config() -> Config:
    """The configuration from the last load_config(); RuntimeError before that."""
    if _config is None:
        raise RuntimeError("Configuration not loaded. Call load_config() first.")
    return _config


def reload_config(config_path: Optional[str] = None) -> Config:
    global _config
    _config = None
    return load_config(config_path)


def create_adapter(name: str, config: Optional[Config] = None) -> StorageAdapter:
    """
    Build the adapter described by a configuration section.

    Args:
        name: 'local' or 'ftp'
        config: Defaults to the loaded configuration

    Raises:
        ValueError: If the name is unknown or its section is missing
        RuntimeError: If no config is given and none is loaded

    Example:
        >>> adapter = create_adapter("local", load_config("fsbridge.toml"))
    """
    config = config or get_config()

    if name == "local":
        if config.local is None:
            raise ValueError("No [local] section configured")
        return LocalAdapter.from_config(config.local)
    if name == "ftp":
        if config.ftp is None:
            raise ValueError("No [ftp] section configured")
        return FtpAdapter(config.ftp)

    raise ValueError(f"Unknown adapter: {name}. Must be 'local' or 'ftp'")
