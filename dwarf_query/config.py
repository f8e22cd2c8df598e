"""Configuration management for dwarf_query."""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'DWARF_QUERY_CONFIG'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class QueryConfig:
    """Configuration settings for an analysis session."""

    # Guest layout
    pointer_size: int = 8

    # Metadata loading
    skip_malformed: bool = True
    log_verbose: bool = False  # Log every loaded struct definition

    # Logging
    log_level: str = 'INFO'
    log_file: Optional[str] = None

    # Query service
    server_host: str = '127.0.0.1'
    server_port: int = 8010


def default_config_locations(config_path: Optional[Path] = None) -> list:
    """Candidate config files, highest priority first."""
    env_path = os.getenv(CONFIG_ENV_VAR)
    return [
        config_path,
        Path(env_path) if env_path else None,
        Path.cwd() / "dwarf_query.json",
        Path.home() / ".config" / "dwarf-query" / "config.json",
    ]


def load_config(config_path: Optional[Path] = None) -> QueryConfig:
    """Load configuration from the first readable file, or use defaults."""
    config = QueryConfig()
    known = {f.name for f in fields(QueryConfig)}

    for path in default_config_locations(config_path):
        if path and Path(path).exists():
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("top level must be an object")

                for key, value in data.items():
                    if key in known:
                        setattr(config, key, value)
                    else:
                        logger.debug(f"Ignoring unknown config key '{key}'")

                logger.info(f"Loaded config from: {path}")
                break
            except (OSError, ValueError) as e:
                logger.warning(f"Could not load config from {path}: {e}")

    return config


def save_config(config: QueryConfig, config_path: Optional[Path] = None) -> bool:
    """Save configuration to file."""
    if config_path is None:
        config_path = Path.home() / ".config" / "dwarf-query" / "config.json"
    config_path = Path(config_path)

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(asdict(config), f, indent=2)

        logger.info(f"Saved config to: {config_path}")
        return True
    except OSError as e:
        logger.error(f"Failed to save config: {e}")
        return False


def setup_logging(config: QueryConfig):
    """Configure logging based on settings."""
    level = getattr(logging, str(config.log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)
