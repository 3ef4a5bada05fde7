from __future__ import annotations

import pytest

from markpack.core import config as core_config


def test_load_toml_parses_file(tmp_path):
    path = tmp_path / "c.toml"
    path.write_text("[a]\nb = 1\n", encoding="utf-8")
    assert core_config.load_toml(path) == {"a": {"b": 1}}


def test_load_toml_missing_file(tmp_path):
    with pytest.raises(core_config.TomlConfigError, match="not found"):
        core_config.load_toml(tmp_path / "missing.toml")


def test_load_toml_syntax_error(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[a\n", encoding="utf-8")
    with pytest.raises(core_config.TomlConfigError, match="Failed to parse"):
        core_config.load_toml(path)


def test_merge_defaults_overlays_without_mutating():
    defaults = {"a": {"b": 1, "c": 2}, "d": "x"}
    merged = core_config.merge_defaults(defaults, {"a": {"c": 5}})
    assert merged == {"a": {"b": 1, "c": 5}, "d": "x"}
    assert defaults == {"a": {"b": 1, "c": 2}, "d": "x"}


def test_merge_defaults_rejects_unknown_keys():
    with pytest.raises(core_config.TomlConfigError, match="'a.z'"):
        core_config.merge_defaults({"a": {"b": 1}}, {"a": {"z": 1}})


def test_merge_defaults_requires_tables_to_stay_tables():
    with pytest.raises(core_config.TomlConfigError, match="Expected table"):
        core_config.merge_defaults({"a": {"b": 1}}, {"a": 3})


def test_write_toml_template_respects_overwrite(tmp_path):
    target = tmp_path / "nested" / "c.toml"
    core_config.write_toml_template(target, template="a = 1\n")
    assert target.read_text(encoding="utf-8") == "a = 1\n"
    assert target.stat().st_mode & 0o777 == 0o600

    with pytest.raises(core_config.TomlConfigError, match="already exists"):
        core_config.write_toml_template(target, template="a = 2\n")

    core_config.write_toml_template(
        target, template="a = 2\n", overwrite=True
    )
    assert target.read_text(encoding="utf-8") == "a = 2\n"
