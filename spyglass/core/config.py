"""
Configuration handling for Spyglass.

Loader defaults and logging settings, read from TOML files and
environment variables.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "spyglass"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "spyglass.toml"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class LoaderConfig:
    """Defaults applied when opening files."""
    use_mapped_io: bool = True
    load_symbols: bool = True
    symbol_extension: str = ".pdb"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoaderConfig:
        """Create LoaderConfig from dictionary."""
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


@dataclass
class OutputConfig:
    """Configuration for logging output."""
    verbose: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OutputConfig:
        """Create OutputConfig from dictionary."""
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


@dataclass
class SpyglassConfig:
    """
    Master configuration for Spyglass.

    Configuration precedence (highest to lowest):
    1. Environment variables (SPYGLASS_*)
    2. Explicit config file
    3. Project-level config (./spyglass.toml)
    4. User-level config (~/.config/spyglass/spyglass.toml)
    5. Default values

    Example:
        >>> config = SpyglassConfig.load()
        >>> config.loader.load_symbols = False
    """
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    _config_path: Path | None = field(default=None, repr=False)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> SpyglassConfig:
        """
        Load configuration with full precedence chain.

        Args:
            config_path: Explicit config file path (overrides search)

        Returns:
            Loaded SpyglassConfig instance
        """
        config = cls()

        if DEFAULT_CONFIG_FILE.exists():
            config._merge_from_file(DEFAULT_CONFIG_FILE)

        project_config = Path("spyglass.toml")
        if project_config.exists():
            config._merge_from_file(project_config)

        if config_path is not None:
            path = Path(config_path)
            if path.exists():
                config._merge_from_file(path)
                config._config_path = path
            else:
                logger.warning(f"Config file not found: {path}")

        config._apply_env_overrides()

        return config

    def _merge_from_file(self, path: Path) -> None:
        """Merge configuration from a TOML file."""
        try:
            import tomllib
        except ImportError:
            import tomli as tomllib  # type: ignore

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Failed to parse config file {path}: {e}")
            return

        self._merge_dict(data)
        logger.debug(f"Loaded configuration from {path}")

    def _merge_dict(self, data: dict[str, Any]) -> None:
        sections = {"loader": LoaderConfig, "output": OutputConfig}
        for name, section_cls in sections.items():
            if name not in data:
                continue
            values = data[name]
            if not isinstance(values, dict):
                logger.warning(f"Ignoring config section {name!r}: expected a table, got {type(values).__name__}")
                continue
            setattr(self, name, section_cls.from_dict(values))

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides (SPYGLASS_* prefix)."""
        env_mapping = {
            "SPYGLASS_MAPPED_IO": ("loader", "use_mapped_io", bool),
            "SPYGLASS_LOAD_SYMBOLS": ("loader", "load_symbols", bool),
            "SPYGLASS_SYMBOL_EXTENSION": ("loader", "symbol_extension"),
            "SPYGLASS_LOG_LEVEL": ("output", "log_level"),
            "SPYGLASS_VERBOSE": ("output", "verbose", bool),
        }

        for env_var, mapping in env_mapping.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            section_name = mapping[0]
            attr_name = mapping[1]
            converter = mapping[2] if len(mapping) > 2 else str

            try:
                if converter == bool:
                    converted = value.lower() in ("true", "1", "yes")
                else:
                    converted = converter(value)

                section = getattr(self, section_name)
                setattr(section, attr_name, converted)
                logger.debug(f"Applied env override: {env_var}={converted}")
            except (ValueError, TypeError) as e:
                logger.warning(f"Invalid env value for {env_var}: {e}")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        result = {}
        for section_name in ("loader", "output"):
            section = getattr(self, section_name)
            result[section_name] = {
                k: v for k, v in section.__dict__.items()
                if not k.startswith("_")
            }
        return result

    def to_json(self, indent: int = 2) -> str:
        """Convert configuration to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> SpyglassConfig:
        """Create configuration from JSON string."""
        config = cls()
        config._merge_dict(json.loads(json_str))
        return config

    def setup_logging(self) -> None:
        """Configure logging based on output settings."""
        level = getattr(logging, self.output.log_level.upper(), logging.INFO)

        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        handler = logging.StreamHandler()
        handler.setFormatter(formatter)

        root_logger = logging.getLogger("spyglass")
        root_logger.setLevel(level)
        root_logger.addHandler(handler)

        if self.output.verbose:
            root_logger.setLevel(logging.DEBUG)

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of warnings.

        Returns:
            List of warning messages (empty if config is valid)
        """
        warnings = []

        ext = self.loader.symbol_extension
        if not ext.startswith(".") or len(ext) < 2:
            warnings.append(f"loader.symbol_extension must look like '.pdb', got {ext!r}")
        if any(sep in ext for sep in ("/", "\\")):
            warnings.append("loader.symbol_extension can't contain path separators")
        if self.output.log_level.upper() not in LOG_LEVELS:
            warnings.append(f"Invalid log level: {self.output.log_level}")

        return warnings
