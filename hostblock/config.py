# hostblock/config.py

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .models import Config, LogFile, LogGroup, Pattern

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/hostblock.yaml")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

# global settings that are plain integers
INT_SETTINGS = (
    "log_check_interval",
    "address_block_score",
    "address_block_multiplier",
)


class ConfigError(Exception):
    """Configuration file can not be used at all."""


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def load_config(path=DEFAULT_CONFIG_PATH) -> Config:
    """Load configuration from a YAML file, missing values get defaults."""
    path = Path(path)
    config = Config()

    if not path.exists():
        logger.warning("Config file does not exist: %s, using defaults", path)
        return config

    logger.debug("Loading config from %s", path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Unable to load config file {path}: {e}") from e

    if data is None:
        logger.warning("Config file is empty: %s, using defaults", path)
        return config
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    if "log_level" in data:
        level = str(data["log_level"]).upper()
        if isinstance(logging.getLevelName(level), int):
            config.log_level = level
        else:
            logger.warning("Ignoring log_level, unknown level: %r", data["log_level"])
    if "datafile_path" in data:
        config.datafile_path = str(data["datafile_path"])
    for name in INT_SETTINGS:
        if name not in data:
            continue
        try:
            setattr(config, name, int(data[name]))
        except (TypeError, ValueError):
            logger.warning("Ignoring %s, not an integer: %r", name, data[name])

    for raw_group in data.get("log_groups") or []:
        group = _parse_log_group(raw_group)
        if group is not None:
            config.log_groups.append(group)

    return config


def _parse_log_group(raw: Any) -> Optional[LogGroup]:
    if not isinstance(raw, dict) or "name" not in raw:
        logger.warning("Skipping log group without a name: %r", raw)
        return None

    group = LogGroup(name=str(raw["name"]))
    logger.debug("Log file group: %s", group.name)

    for path in raw.get("log_files") or []:
        if not isinstance(path, str) or not path.strip():
            logger.warning("Skipping invalid log file path in %s: %r", group.name, path)
            continue
        group.log_files.append(LogFile(path=path.strip()))
        logger.debug("Log file path: %s", path.strip())

    for raw_pattern in raw.get("patterns") or []:
        pattern = _parse_pattern(group.name, raw_pattern)
        if pattern is not None:
            group.patterns.append(pattern)

    return group


def _parse_pattern(group_name: str, raw: Any) -> Optional[Pattern]:
    if isinstance(raw, str):
        raw = {"pattern": raw}
    if not isinstance(raw, dict) or not raw.get("pattern"):
        logger.warning("Skipping pattern without text in %s: %r", group_name, raw)
        return None

    try:
        score = int(raw.get("score", 1))
    except (TypeError, ValueError):
        logger.warning("Skipping pattern with invalid score in %s: %r", group_name, raw)
        return None

    logger.debug("Pattern to match: %s score: %d", raw["pattern"], score)
    return Pattern(pattern=str(raw["pattern"]), score=score)


def config_to_dict(config: Config) -> Dict[str, Any]:
    groups: List[Dict[str, Any]] = []
    for group in config.log_groups:
        groups.append(
            {
                "name": group.name,
                "log_files": [log_file.path for log_file in group.log_files],
                "patterns": [
                    {"pattern": p.pattern, "score": p.score} for p in group.patterns
                ],
            }
        )
    return {
        "log_level": config.log_level,
        "log_check_interval": config.log_check_interval,
        "address_block_score": config.address_block_score,
        "address_block_multiplier": config.address_block_multiplier,
        "datafile_path": config.datafile_path,
        "log_groups": groups,
    }


def dump_config(config: Config) -> str:
    """Render currently loaded configuration as YAML, bookmarks as comments."""
    lines = [
        "## Hostblock configuration, generated automatically",
        f"## Timestamp: {int(time.time())}",
    ]
    for log_file in config.iter_log_files():
        lines.append(f"## {log_file.path} bookmark: {log_file.bookmark} size: {log_file.size}")
    lines.append("")
    body = yaml.safe_dump(config_to_dict(config), sort_keys=False, default_flow_style=False)
    return "\n".join(lines) + "\n" + body


if __name__ == "__main__":
    import sys

    configure_logging("DEBUG")
    print(dump_config(load_config(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CONFIG_PATH)))
