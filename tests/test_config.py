# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for configuration management: loading, merging and clamping.
"""

import tempfile
from pathlib import Path

import yaml

from speechsync.config import (
    DEFAULT_CONFIG,
    clamp_setting,
    count_out_of_range,
    default_config,
    load_config,
    merge_with_defaults,
    save_config,
    update_config_section,
    validate_config,
)


def test_default_config_is_a_copy():
    """Mutating a default config must not leak into DEFAULT_CONFIG."""
    config = default_config()
    config["pacing"]["target_wpm"] = 999
    config["filler_words"]["filler_words"].append("banana")

    assert DEFAULT_CONFIG["pacing"]["target_wpm"] == 150
    assert "banana" not in DEFAULT_CONFIG["filler_words"]["filler_words"]


def test_load_config_missing_file_uses_defaults():
    """A missing config file gives the defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(Path(tmpdir) / ".speechsync.yaml")

    assert config["pacing"] == DEFAULT_CONFIG["pacing"]
    assert config["session"]["interim_policy"] == "final_only"


def test_load_config_merges_partial_sections():
    """Keys missing from a file section keep their defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".speechsync.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({"pacing": {"target_wpm": 130}}, f)

        config = load_config(config_path)

    assert config["pacing"]["target_wpm"] == 130
    assert config["pacing"]["tolerance_range"] == 20
    assert config["karaoke"]["match_threshold"] == 0.7


def test_load_config_clamps_out_of_range_values():
    """Values outside their bounds are clamped to the nearest bound."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".speechsync.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({
                "adaptive_scroll": {"base_scroll_speed": 500, "responsiveness": 0.01},
                "karaoke": {"match_threshold": 0.1},
            }, f)

        config = load_config(config_path)

    assert config["adaptive_scroll"]["base_scroll_speed"] == 200.0
    assert config["adaptive_scroll"]["responsiveness"] == 0.1
    assert config["karaoke"]["match_threshold"] == 0.3


def test_load_config_invalid_yaml_falls_back(capsys):
    """An unparsable file prints a warning and uses the defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".speechsync.yaml"
        config_path.write_text("pacing: [unclosed", encoding="utf-8")

        config = load_config(config_path)

    assert config["pacing"]["target_wpm"] == 150
    assert "Warning" in capsys.readouterr().out


def test_save_and_reload_config():
    """A saved config loads back with the same values."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".speechsync.yaml"
        config = default_config()
        config["pacing"]["target_wpm"] = 170
        config["filler_words"]["sensitivity"] = "high"

        assert save_config(config, config_path)
        loaded = load_config(config_path)

    assert loaded["pacing"]["target_wpm"] == 170
    assert loaded["filler_words"]["sensitivity"] == "high"


class TestClampSetting:
    """Tests for single-setting clamping."""

    def test_in_range_value_unchanged(self):
        assert clamp_setting("adaptive_scroll", "pause_threshold", 2.5) == 2.5

    def test_integer_settings_are_rounded(self):
        assert clamp_setting("karaoke", "window_size", 2.6) == 3
        assert clamp_setting("karaoke", "window_size", 0) == 1

    def test_non_number_uses_default(self):
        assert clamp_setting("pacing", "target_wpm", "fast") == 150
        assert clamp_setting("pacing", "target_wpm", True) == 150
        assert clamp_setting("adaptive_scroll", "smoothing_factor", float("nan")) == 0.8

    def test_unbounded_key_passes_through(self):
        assert clamp_setting("karaoke", "scroll_offset", -5) == -5


class TestValidateConfig:
    """Tests for whole-config validation."""

    def test_unknown_sensitivity_reset(self):
        config = default_config()
        config["filler_words"]["sensitivity"] = "extreme"
        assert validate_config(config)["filler_words"]["sensitivity"] == "medium"

    def test_unknown_interim_policy_reset(self):
        config = default_config()
        config["session"]["interim_policy"] = "sometimes"
        assert validate_config(config)["session"]["interim_policy"] == "final_only"

    def test_validate_does_not_mutate_input(self):
        config = default_config()
        config["adaptive_scroll"]["look_ahead_words"] = 100
        validate_config(config)
        assert config["adaptive_scroll"]["look_ahead_words"] == 100

    def test_count_out_of_range(self):
        config = default_config()
        assert count_out_of_range(config) == 0
        config["adaptive_scroll"]["look_ahead_words"] = 100
        config["pacing"]["target_wpm"] = "fast"
        assert count_out_of_range(config) == 2

    def test_merge_with_defaults_fills_missing_sections(self):
        config = merge_with_defaults({"pacing": {"target_wpm": 120}})
        assert config["pacing"]["target_wpm"] == 120
        assert config["pacing"]["window_words"] == 10
        assert config["adaptive_scroll"] == DEFAULT_CONFIG["adaptive_scroll"]


def test_update_config_section_returns_new_config():
    """Updating a section validates it and leaves the original alone."""
    config = default_config()
    updated = update_config_section(config, "adaptive_scroll", {"acceleration_limit": 9})

    assert updated["adaptive_scroll"]["acceleration_limit"] == 5.0
    assert updated["adaptive_scroll"]["base_scroll_speed"] == 50.0
    assert config["adaptive_scroll"]["acceleration_limit"] == 3.0
