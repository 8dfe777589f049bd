"""
Parser configuration.

Defaults can be overridden from the environment (``ISSUE_NLP_*``) so the
service embedding the parser does not need its own settings plumbing.
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

_ENV_PREFIX = "ISSUE_NLP_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class ParseConfig(BaseModel):
    """Options recognised by the parser pipeline."""

    max_history_size: int = Field(default=100, ge=0)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    enable_spell_check: bool = True
    enable_context_infer: bool = True
    enable_suggestions: bool = True
    max_suggestions: int = Field(default=5, ge=0)
    default_project: str = ""
    default_assignee: str = ""
    timezone: str = "UTC"

    # Classifier scoring weights
    base_score: float = Field(default=0.6, ge=0.0, le=1.0)
    coverage_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    capture_group_bonus: float = Field(default=0.1, ge=0.0, le=1.0)
    known_entity_bonus: float = Field(default=0.1, ge=0.0, le=1.0)

    # Disambiguation thresholds
    ambiguity_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    similarity_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_similar_options: int = Field(default=5, ge=0)
    max_clarification_options: int = Field(default=10, ge=0)

    # Successful parses below this confidence also get suggestions
    suggestion_confidence_ceiling: float = Field(default=0.8, ge=0.0, le=1.0)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone '{value}'") from e
        return value

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides: Any) -> "ParseConfig":
        """Build a config from ``ISSUE_NLP_*`` variables plus explicit overrides."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for name in cls.model_fields:
            raw = env.get(_ENV_PREFIX + name.upper())
            if raw is None or raw == "":
                continue
            if cls.model_fields[name].annotation is bool:
                values[name] = _parse_bool(name, raw)
            else:
                values[name] = raw.strip()

        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid parser configuration: {e}") from e


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{_ENV_PREFIX}{name.upper()} must be a boolean, got '{raw}'")
