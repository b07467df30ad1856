"""Tests for YAML config loading and run settings"""

import logging
from pathlib import Path

import pytest

from race_match_analysis.config import AnalysisSettings, load_config, settings_from_config
from race_match_analysis.pipeline import DEFAULT_CONFIG_PATH


def test_default_config_loads(monkeypatch):
    monkeypatch.setenv("RACE_MATCH_INPUT", "data/raw/race_match.csv")

    settings = settings_from_config(load_config(DEFAULT_CONFIG_PATH))

    assert settings.input_path == Path("data/raw/race_match.csv")
    assert settings.seed == 42
    assert settings.train_fraction == 0.8
    assert settings.strategy == "both"
    assert settings.quantitative_predictors == ("enrollShare", "totalTeacher", "enrollTotal")
    assert settings.school_factors == ("Elementary", "SchoolType")
    assert settings.make_plots is True
    assert settings.extra == {}


def test_env_substitution(tmp_path, monkeypatch):
    cfg = tmp_path / "analysis.yaml"
    cfg.write_text("data:\n  input_path: ${RM_TEST_INPUT}\n  output_dir: ${RM_TEST_UNSET}\n", encoding="utf-8")
    monkeypatch.setenv("RM_TEST_INPUT", "/tmp/in.csv")
    monkeypatch.delenv("RM_TEST_UNSET", raising=False)

    config = load_config(cfg)

    assert config["data"]["input_path"] == "/tmp/in.csv"
    # unset variables are left as written
    assert config["data"]["output_dir"] == "${RM_TEST_UNSET}"


def test_missing_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_non_mapping_config(tmp_path):
    cfg = tmp_path / "analysis.yaml"
    cfg.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ValueError, match="mapping"):
        load_config(cfg)


def test_input_path_argument_wins():
    config = {"data": {"input_path": "from_config.csv"}, "partition": {"seed": 7}, "plots": {"enabled": False}}

    settings = settings_from_config(config, input_path="from_cli.csv")

    assert settings.input_path == Path("from_cli.csv")
    assert settings.seed == 7
    assert settings.make_plots is False


def test_unknown_keys_warned_and_kept_in_extra(caplog):
    with caplog.at_level(logging.WARNING, logger="race_match_analysis.config"):
        settings = settings_from_config({"data": {"input_path": "x.csv"}, "model": {"alpha": 0.05}})

    assert settings.extra == {"alpha": 0.05}
    assert "alpha" in caplog.text


def test_known_keys_not_warned(caplog, monkeypatch):
    monkeypatch.setenv("RACE_MATCH_INPUT", "x.csv")

    with caplog.at_level(logging.WARNING, logger="race_match_analysis.config"):
        settings_from_config(load_config(DEFAULT_CONFIG_PATH))

    assert "unknown config keys" not in caplog.text


def test_no_input_path():
    with pytest.raises(ValueError, match="input path"):
        settings_from_config({})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"train_fraction": 1.0},
        {"train_fraction": 0.0},
        {"grid_step": 0.0},
        {"stratify_bins": 0},
        {"strategy": "sideways"},
        {"quantitative_predictors": ()},
    ],
)
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        AnalysisSettings(input_path=Path("x.csv"), **kwargs)


def test_with_overrides_skips_none():
    settings = AnalysisSettings(input_path=Path("x.csv"))

    updated = settings.with_overrides(seed=7, strategy=None, make_plots=False)

    assert updated.seed == 7
    assert updated.strategy == "both"
    assert updated.make_plots is False
    assert settings.seed == 42
