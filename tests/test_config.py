"""Tests for docserve.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from docserve.config import (
    ConfigError,
    DocServeConfig,
    ServeConfig,
    WatchConfig,
    load_config,
)


def test_load_config_returns_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert isinstance(config, DocServeConfig)
    assert config.root == tmp_path.resolve()
    assert config.build.preset is None
    assert config.build.command == []
    assert config.watch == WatchConfig()
    assert config.watch.enabled is True
    assert config.watch.quiet_period_ms == 300
    assert config.serve == ServeConfig()
    assert config.serve.bind_host == "127.0.0.1"


def test_load_config_parses_expected_fields(tmp_path: Path) -> None:
    config_file = tmp_path / ".docserve.yml"
    config_file.write_text(
        """
build:
  preset: sphinx
  command: "sphinx-build -b html docs 'docs/_build/my html'"
  output_dir: docs/_build/html
  cwd: docs
watch:
  enabled: false
  quiet_period_ms: 150
  exclude:
    - "*.tmp"
    - "generated/"
  extra: ["../shared"]
serve:
  host: 0.0.0.0
  port: 9001
  index: /mycrate/index.html
  public: yes
""",
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.build.preset == "sphinx"
    assert config.build.command == ["sphinx-build", "-b", "html", "docs", "docs/_build/my html"]
    assert config.build.output_dir == "docs/_build/html"
    assert config.build.cwd == "docs"

    assert config.watch.enabled is False
    assert config.watch.quiet_period_ms == 150
    assert config.watch.exclude == ["*.tmp", "generated/"]
    assert config.watch.extra == ["../shared"]

    assert config.serve.host == "0.0.0.0"
    assert config.serve.port == 9001
    assert config.serve.index == "/mycrate/index.html"
    assert config.serve.public is True


def test_load_config_accepts_command_list(tmp_path: Path) -> None:
    (tmp_path / ".docserve.yml").write_text(
        "build:\n  command: [make, html]\n  output_dir: _build/html\n",
        encoding="utf-8",
    )

    config = load_config(tmp_path)

    assert config.build.command == ["make", "html"]


def test_load_config_empty_file_yields_defaults(tmp_path: Path) -> None:
    (tmp_path / ".docserve.yml").write_text("\n", encoding="utf-8")

    config = load_config(tmp_path)

    assert config.watch.enabled is True
    assert config.serve.port == 8000


def test_load_config_rejects_non_mapping(tmp_path: Path) -> None:
    (tmp_path / ".docserve.yml").write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_load_config_reports_yaml_errors(tmp_path: Path) -> None:
    (tmp_path / ".docserve.yml").write_text("build: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Failed to parse"):
        load_config(tmp_path)


def test_load_config_rejects_undecodable_file(tmp_path: Path) -> None:
    (tmp_path / ".docserve.yml").write_bytes(b"serve:\n  host: \xff\xfe\n")

    with pytest.raises(ConfigError, match="Cannot read .docserve.yml"):
        load_config(tmp_path)


def test_load_config_rejects_unreadable_path(tmp_path: Path) -> None:
    (tmp_path / ".docserve.yml").mkdir()

    with pytest.raises(ConfigError, match="Cannot read .docserve.yml"):
        load_config(tmp_path)


def test_load_config_rejects_negative_quiet_period(tmp_path: Path) -> None:
    (tmp_path / ".docserve.yml").write_text("watch:\n  quiet_period_ms: -5\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_public_flag_binds_all_interfaces() -> None:
    assert ServeConfig(public=True).bind_host == "0.0.0.0"
