"""
Configuration loader for RTP Audit.

This module provides Pydantic models for strong validation of audit settings
and a loader function that merges a YAML configuration file with
environment variables.

Design Principles:
- Strict Schema: every threshold the engine relies on is declared here with
  its range constraints. A silently-wrong default could mask a real
  compliance failure, so invalid values fail at construction time.
- Environment Overrides: any setting can be overridden by an environment
  variable following the nested structure, e.g. `rtp.overall_tolerance` is
  overridden by `RTP_AUDIT_RTP__OVERALL_TOLERANCE`.
- Single Source of Truth: `load_settings` returns an immutable
  `AuditSettings` object.
- Clear Errors: Pydantic `ValidationError`s raised while loading are wrapped
  in `ConfigError`.
"""

import os
import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_core import PydanticCustomError

# --- Custom Exceptions ---

class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass

# --- Pydantic Models for Configuration Sections ---

class GameValidationProfile(BaseModel):
    """Per-game validation overrides; unset fields fall back to the RTP defaults."""
    model_config = ConfigDict(frozen=True)

    target_rtp: Optional[float] = Field(None, gt=0, le=100)
    tolerance: Optional[float] = Field(None, gt=0)
    critical_tolerance_factor: Optional[float] = Field(None, ge=1)
    min_rounds_for_validation: Optional[int] = Field(None, gt=0)


class RTPSettings(BaseModel):
    """Targets and thresholds used by validation and streak detection."""
    model_config = ConfigDict(frozen=True)

    overall_target_rtp: float = Field(96.0, gt=0, le=100)
    overall_tolerance: float = Field(0.5, gt=0)
    critical_tolerance_factor: float = Field(2.0, ge=1)
    min_rounds_for_validation: int = Field(100, gt=0)
    max_losing_streak: int = Field(50, gt=0)
    # Game-wide cold streaks are always tracked; they raise anomalies only when set.
    flag_game_streaks: bool = False
    # Per-game target override (game_id -> percent)
    game_specific_rtps: Dict[str, float] = Field(default_factory=dict)
    # Full per-game validation profiles; a profile target wins over game_specific_rtps
    game_profiles: Dict[str, GameValidationProfile] = Field(default_factory=dict)
    # Client scopes have no target of their own; they are held to the overall
    # target with this (wider) multiplier of the tolerance.
    client_extreme_factor: float = Field(3.0, ge=1)
    snapshot_interval: int = Field(100, gt=0)

    @field_validator('game_specific_rtps')
    def game_targets_must_be_percentages(cls, v):
        for game_id, target in v.items():
            if not game_id:
                raise PydanticCustomError(
                    "game_id_empty",
                    "Per-game RTP overrides must be keyed by a non-empty game id",
                )
            if not (0 < target <= 100):
                raise PydanticCustomError(
                    "game_target_invalid",
                    "Target RTP for game '{game_id}' must be in (0, 100], got {target}",
                    {"game_id": game_id, "target": target},
                )
        return v

    @model_validator(mode='after')
    def client_band_not_narrower_than_critical(self):
        if self.client_extreme_factor < self.critical_tolerance_factor:
            raise PydanticCustomError(
                "client_band_invalid",
                "client_extreme_factor ({client}) must be >= critical_tolerance_factor ({critical})",
                {"client": self.client_extreme_factor, "critical": self.critical_tolerance_factor},
            )
        return self

    def _profile_value(self, game_id: str, name: str, default):
        profile = self.game_profiles.get(game_id)
        value = getattr(profile, name) if profile is not None else None
        return default if value is None else value

    def target_for_game(self, game_id: str) -> float:
        return self._profile_value(game_id, "target_rtp",
                                   self.game_specific_rtps.get(game_id, self.overall_target_rtp))

    def tolerance_for_game(self, game_id: str) -> float:
        return self._profile_value(game_id, "tolerance", self.overall_tolerance)

    def critical_factor_for_game(self, game_id: str) -> float:
        return self._profile_value(game_id, "critical_tolerance_factor", self.critical_tolerance_factor)

    def min_rounds_for_game(self, game_id: str) -> int:
        return self._profile_value(game_id, "min_rounds_for_validation", self.min_rounds_for_validation)


class IngestionSettings(BaseModel):
    """Parameters forwarded to the round supplier and batch loop."""
    model_config = ConfigDict(frozen=True)

    company: str = "default"
    game_id: Optional[str] = None
    client_id: str = "rtp-validation-player"
    bet_amount: float = Field(1.0, gt=0)
    batch_size: int = Field(100, gt=0)
    batch_timeout_s: float = Field(10.0, gt=0)
    max_retries: int = Field(0, ge=0)
    retry_backoff_ms: int = Field(0, ge=0)


class LoggingSettings(BaseModel):
    """Settings for logging configuration."""
    model_config = ConfigDict(frozen=True)

    level: str = Field("INFO", description="The logging level, e.g., DEBUG, INFO, WARNING.")
    file: Optional[str] = None


class AuditSettings(BaseModel):
    """The root Pydantic model for the entire configuration."""
    model_config = ConfigDict(frozen=True)

    rtp: RTPSettings = RTPSettings()
    ingestion: IngestionSettings = IngestionSettings()
    logging: LoggingSettings = LoggingSettings()

# --- Helper Functions ---

class _JsonOverride(dict):
    """A mapping parsed from one env var; it replaces the file value whole."""


def _load_config_from_yaml(path: Path) -> Dict[str, Any]:
    """Loads the YAML configuration file."""
    if not path.is_file():
        raise ConfigError(f"Configuration file not found at: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file at {path}: {e}") from e

def _get_env_overrides(prefix: str = "RTP_AUDIT") -> Dict[str, Any]:
    """
    Parses environment variables and converts them into a nested dict.
    e.g., RTP_AUDIT_RTP__GAME_SPECIFIC_RTPS='{"slot-01": 95.5}' becomes
    {'rtp': {'game_specific_rtps': {'slot-01': 95.5}}}
    """
    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix + "_"):
            continue
        parts = key.removeprefix(prefix).strip("_").lower().split("__")

        # Ids stay strings even when they look numeric
        if parts[-1] in ('company', 'game_id', 'client_id'):
            parsed_value = value
        elif (value.startswith('[') and value.endswith(']')) or \
             (value.startswith('{') and value.endswith('}')) or \
             value.lower() in ['true', 'false', 'null'] or \
             value.replace('.', '', 1).isdigit():
            try:
                parsed_value = json.loads(value)
            except (json.JSONDecodeError, AttributeError):
                parsed_value = value
            if isinstance(parsed_value, dict):
                parsed_value = _JsonOverride(parsed_value)
        else:
            parsed_value = value

        d = overrides
        for part in parts[:-1]:
            d = d.setdefault(part, {})
        d[parts[-1]] = parsed_value
    return overrides

def _merge_configs(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merges the override dict into the base dict.
    Overwrites values and lists. Section dicts are merged key by key; a
    mapping given as one JSON env value replaces the file mapping.
    """
    for key, value in overrides.items():
        if isinstance(value, _JsonOverride):
            base[key] = dict(value)
        elif isinstance(value, dict) and key in base and isinstance(base[key], dict):
            base[key] = _merge_configs(base[key], value)
        else:
            base[key] = value
    return base

def _format_validation_error(e: ValidationError) -> str:
    error_details = e.errors()
    error_msg = f"Configuration validation failed with {len(error_details)} error(s):\n"
    for error in error_details:
        loc = " -> ".join(map(str, error['loc'])) if error['loc'] else "root"
        error_msg += f"  - Location: {loc}\n    Message: {error['msg']}\n"
    return error_msg

# --- Public API ---

def settings_from_dict(config: Optional[Dict[str, Any]] = None) -> AuditSettings:
    """Validate an in-memory config dict (no file, no env overrides)."""
    try:
        return AuditSettings.model_validate(config or {})
    except ValidationError as e:
        logger.error(_format_validation_error(e))
        raise ConfigError("Failed to validate settings.") from e

def load_settings(path: str = "settings.yaml") -> AuditSettings:
    """
    Loads, validates, and returns the audit settings.

    This is the main entry point for configuration. It performs the following steps:
    1. Loads the base configuration from the specified YAML file.
    2. Scans environment variables for overrides (prefixed with "RTP_AUDIT_").
    3. Merges the environment overrides into the base configuration.
    4. Validates the final configuration against the `AuditSettings` model.

    Args:
        path: The path to the YAML configuration file.

    Returns:
        A validated and immutable `AuditSettings` object.

    Raises:
        ConfigError: If the file is not found, cannot be parsed, or if
                     validation fails.
    """
    logger.info(f"Loading settings from '{path}'...")

    yaml_config = _load_config_from_yaml(Path(path))
    if not isinstance(yaml_config, dict):
        raise ConfigError(f"YAML file '{path}' is empty or invalid.")

    env_overrides = _get_env_overrides()
    final_config = _merge_configs(yaml_config, env_overrides)

    try:
        settings = AuditSettings.model_validate(final_config)
        logger.success("Settings loaded and validated successfully.")
        return settings
    except ValidationError as e:
        logger.error(_format_validation_error(e))
        raise ConfigError("Failed to validate settings.") from e
