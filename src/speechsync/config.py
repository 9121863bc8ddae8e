# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for SpeechSync.
Handles loading and saving settings from a YAML config file, and clamping
numeric settings into their documented ranges.
"""

import copy
import logging
from pathlib import Path
from typing import Any, TypedDict

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME: str = ".speechsync.yaml"


class KaraokeSettings(TypedDict):
    """Type definition for karaoke alignment settings."""
    enabled: bool
    match_threshold: float
    # scroll_offset and animation_duration are only passed through to the renderer
    scroll_offset: int
    highlight_duration: int  # ms
    animation_duration: int  # ms
    fade_out_delay: int  # ms
    window_size: int
    # Consecutive unmatched words before a forward re-sync is tried (0 = never)
    max_unmatched_before_skip: int
    max_skip_distance: int


class PacingSettings(TypedDict):
    """Type definition for pace analysis settings."""
    target_wpm: int
    tolerance_range: int
    window_words: int


class AdaptiveScrollSettings(TypedDict):
    """Type definition for adaptive scroll settings."""
    enabled: bool
    base_scroll_speed: float  # px/s
    responsiveness: float
    smoothing_factor: float
    pause_threshold: float  # seconds
    acceleration_limit: float
    deceleration_limit: float
    look_ahead_words: int


class FillerWordSettings(TypedDict):
    """Type definition for filler word detection settings."""
    enabled: bool
    filler_words: list[str]
    sensitivity: str  # "low", "medium" or "high"
    cross_detector_window_ms: int
    # Fillers shorter than this get no one-edit typo matching (0 = all do)
    min_typo_length: int


class SessionSettings(TypedDict):
    """Type definition for per-session engine settings."""
    history_capacity: int
    interim_policy: str  # "final_only" or "provisional"
    tick_hz: int
    filler_rate_warning: float  # fillers per minute


class Config(TypedDict):
    """Type definition for the complete configuration."""
    # Server settings
    host: str
    port: int
    karaoke: KaraokeSettings
    pacing: PacingSettings
    adaptive_scroll: AdaptiveScrollSettings
    filler_words: FillerWordSettings
    session: SessionSettings


DEFAULT_FILLER_WORDS: list[str] = [
    "um", "uh", "er", "ah", "hmm", "like", "you know", "so", "well",
    "basically", "actually", "literally", "totally", "really",
    "kinda", "sorta", "gonna", "wanna", "right", "okay", "alright", "yeah",
]

SENSITIVITY_LEVELS: tuple[str, ...] = ("low", "medium", "high")
INTERIM_POLICIES: tuple[str, ...] = ("final_only", "provisional")


# Default configuration values
DEFAULT_CONFIG: Config = {
    # Server settings
    "host": "127.0.0.1",
    "port": 8000,

    "karaoke": {
        "enabled": True,
        "match_threshold": 0.7,
        "scroll_offset": 100,
        "highlight_duration": 1500,
        "animation_duration": 200,
        "fade_out_delay": 500,
        "window_size": 10,
        "max_unmatched_before_skip": 4,
        "max_skip_distance": 30,
    },

    "pacing": {
        "target_wpm": 150,
        "tolerance_range": 20,
        "window_words": 10,
    },

    "adaptive_scroll": {
        "enabled": True,
        "base_scroll_speed": 50.0,
        "responsiveness": 0.7,
        "smoothing_factor": 0.8,
        "pause_threshold": 2.0,
        "acceleration_limit": 3.0,
        "deceleration_limit": 0.1,
        "look_ahead_words": 5,
    },

    "filler_words": {
        "enabled": True,
        "filler_words": list(DEFAULT_FILLER_WORDS),
        "sensitivity": "medium",
        # 0 keeps the STT and rule-based detectors independent
        "cross_detector_window_ms": 0,
        "min_typo_length": 0,
    },

    "session": {
        "history_capacity": 1000,
        "interim_policy": "final_only",
        "tick_hz": 60,
        "filler_rate_warning": 5.0,
    },
}

# Documented (min, max) bounds per section. Values outside are clamped.
SETTING_BOUNDS: dict[str, dict[str, tuple[float, float]]] = {
    "karaoke": {
        "match_threshold": (0.3, 1.0),
        "highlight_duration": (0, 10000),
        "animation_duration": (0, 5000),
        "fade_out_delay": (0, 10000),
        "window_size": (1, 100),
        "max_unmatched_before_skip": (0, 50),
        "max_skip_distance": (1, 500),
    },
    "pacing": {
        "target_wpm": (40, 400),
        "tolerance_range": (0, 200),
        "window_words": (2, 100),
    },
    "adaptive_scroll": {
        "base_scroll_speed": (10, 200),
        "responsiveness": (0.1, 1.0),
        "smoothing_factor": (0.1, 1.0),
        "pause_threshold": (0.5, 5.0),
        "acceleration_limit": (1.0, 5.0),
        "deceleration_limit": (0.1, 1.0),
        "look_ahead_words": (1, 20),
    },
    "filler_words": {
        "cross_detector_window_ms": (0, 5000),
        "min_typo_length": (0, 20),
    },
    "session": {
        "history_capacity": (10, 100000),
        "tick_hz": (1, 240),
        "filler_rate_warning": (0.0, 600.0),
    },
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.

    Args:
        base: Base dictionary to merge from.
        override: Dictionary with values that take precedence over base.

    Returns:
        New dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def clamp_setting(section: str, key: str, value: Any) -> Any:
    """
    Clamp a single numeric setting to its documented bounds.

    Non-numeric values for a bounded key fall back to the default. Keys
    without bounds are returned unchanged.

    Args:
        section: Config section name (e.g. "adaptive_scroll").
        key: Setting name within the section.
        value: Candidate value.

    Returns:
        The value, clamped to the nearest valid bound if it was out of range.
    """
    bounds = SETTING_BOUNDS.get(section, {}).get(key)
    if bounds is None:
        return value

    default = DEFAULT_CONFIG[section][key]  # type: ignore[literal-required]
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        logger.warning("Config %s.%s=%r is not a number, using default %r",
                       section, key, value, default)
        return default

    low, high = bounds
    clamped = min(max(value, low), high)
    if clamped != value:
        logger.warning("Config %s.%s=%r out of range [%s, %s], clamped to %s",
                       section, key, value, low, high, clamped)
    if isinstance(default, int):
        return int(round(clamped))
    return float(clamped)


def count_out_of_range(config: dict[str, Any]) -> int:
    """Number of bounded settings in config that validate_config would change."""
    count = 0
    for section, keys in SETTING_BOUNDS.items():
        values = config.get(section)
        if not isinstance(values, dict):
            continue
        for key, (low, high) in keys.items():
            if key not in values:
                continue
            value = values[key]
            if (isinstance(value, bool) or not isinstance(value, (int, float))
                    or value != value or not low <= value <= high):
                count += 1
    return count


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """
    Return a copy of config with all ranged settings clamped and
    enumerated settings checked.

    Args:
        config: Configuration dictionary (already merged with defaults).

    Returns:
        Validated configuration dictionary.
    """
    result: dict[str, Any] = copy.deepcopy(dict(config))
    for section, keys in SETTING_BOUNDS.items():
        values = result.setdefault(section, {})
        for key in keys:
            if key in values:
                values[key] = clamp_setting(section, key, values[key])

    fillers = result["filler_words"]
    if fillers.get("sensitivity") not in SENSITIVITY_LEVELS:
        logger.warning("Unknown filler sensitivity %r, using 'medium'",
                       fillers.get("sensitivity"))
        fillers["sensitivity"] = "medium"
    if not isinstance(fillers.get("filler_words"), list):
        fillers["filler_words"] = list(DEFAULT_FILLER_WORDS)

    session = result["session"]
    if session.get("interim_policy") not in INTERIM_POLICIES:
        logger.warning("Unknown interim policy %r, using 'final_only'",
                       session.get("interim_policy"))
        session["interim_policy"] = "final_only"

    return result


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults and clamped.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    # Start with defaults
    config: dict[str, Any] = copy.deepcopy(dict(DEFAULT_CONFIG))

    # Load from file if it exists
    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: dict[str, Any] | None = yaml.safe_load(f)
                if isinstance(file_config, dict):
                    config = _deep_merge(config, file_config)
        except (OSError, yaml.YAMLError) as e:
            print(f"Warning: Could not load config from {config_path}: {e}")

    return validate_config(config)  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary to save.
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(dict(config), f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        print(f"Error saving config to {config_path}: {e}")
        return False


def default_config() -> Config:
    """Return a fresh deep copy of the default configuration."""
    return copy.deepcopy(DEFAULT_CONFIG)


def update_config_section(config: Config, section: str, settings: dict[str, Any]) -> Config:
    """
    Merge new settings into one section of the config and re-validate.
    Returns a new config dict.

    Args:
        config: Current configuration.
        section: Section name to update.
        settings: New settings to merge in.

    Returns:
        New configuration with the updated section.
    """
    new_config: dict[str, Any] = copy.deepcopy(dict(config))
    new_config[section] = _deep_merge(new_config.get(section, {}), settings)
    return validate_config(new_config)  # type: ignore[return-value]


def merge_with_defaults(config: dict[str, Any]) -> Config:
    """Fill in missing sections and keys from the defaults, then validate."""
    return validate_config(_deep_merge(default_config(), config))  # type: ignore[return-value]
