# tests/test_config.py
import pytest
import yaml

from hostblock.config import ConfigError, config_to_dict, dump_config, load_config
from hostblock.models import Config, LogFile, Pattern

CONFIG_YAML = """
log_level: DEBUG
log_check_interval: 15
address_block_score: 20
address_block_multiplier: 600
datafile_path: /tmp/hostblock.data
log_groups:
  - name: SSH
    log_files:
      - /var/log/auth.log
      - /var/log/secure
    patterns:
      - pattern: "Failed password for .* from %i"
        score: 2
      - "Invalid user .* from %i"
  - name: Apache
    log_files:
      - /var/log/apache2/access.log
"""


def write_config(tmp_path, text):
    path = tmp_path / "hostblock.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_full_config(tmp_path):
    config = load_config(write_config(tmp_path, CONFIG_YAML))

    assert config.log_level == "DEBUG"
    assert config.log_check_interval == 15
    assert config.address_block_score == 20
    assert config.address_block_multiplier == 600
    assert config.datafile_path == "/tmp/hostblock.data"
    assert [g.name for g in config.log_groups] == ["SSH", "Apache"]
    assert config.log_groups[0].patterns == [
        Pattern("Failed password for .* from %i", 2),
        Pattern("Invalid user .* from %i", 1),
    ]
    assert [f.path for f in config.iter_log_files()] == [
        "/var/log/auth.log",
        "/var/log/secure",
        "/var/log/apache2/access.log",
    ]
    assert config.find_log_file("/var/log/secure") == LogFile("/var/log/secure")
    assert config.find_log_file("/var/log/messages") is None


def test_missing_config_uses_defaults(tmp_path):
    assert load_config(tmp_path / "nope.yaml") == Config()


def test_empty_config_uses_defaults(tmp_path):
    assert load_config(write_config(tmp_path, "")) == Config()


def test_invalid_yaml_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write_config(tmp_path, "log_groups: [\n"))


def test_non_mapping_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write_config(tmp_path, "- a\n- b\n"))


def test_invalid_entries_are_skipped(tmp_path):
    text = """
log_check_interval: soon
log_groups:
  - log_files: [/var/log/auth.log]
  - name: SSH
    log_files: ["", /var/log/auth.log, 5]
    patterns:
      - score: 3
      - pattern: "from %i"
        score: lots
      - pattern: "Failed from %i"
"""
    config = load_config(write_config(tmp_path, text))

    assert config.log_check_interval == 30
    assert len(config.log_groups) == 1
    group = config.log_groups[0]
    assert group.log_files == [LogFile("/var/log/auth.log")]
    assert group.patterns == [Pattern("Failed from %i", 1)]


def test_dump_config_round_trips(tmp_path):
    config = load_config(write_config(tmp_path, CONFIG_YAML))
    config.log_groups[0].log_files[0].bookmark = 77

    text = dump_config(config)

    assert text.startswith("## Hostblock configuration, generated automatically\n")
    assert "## /var/log/auth.log bookmark: 77 size: 0" in text
    assert yaml.safe_load(text) == config_to_dict(config)
    assert load_config(write_config(tmp_path, text)) == load_config(
        write_config(tmp_path, CONFIG_YAML)
    )


def test_unknown_log_level_keeps_default(tmp_path):
    config = load_config(write_config(tmp_path, "log_level: verbose\n"))
    assert config.log_level == "INFO"

    config = load_config(write_config(tmp_path, "log_level: warning\n"))
    assert config.log_level == "WARNING"
