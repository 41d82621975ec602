"""Configuration loading for Unassign.

Reads an optional ``config.yaml`` from the config directory, then applies
environment overrides. Pydantic models validate the schema. The resulting
settings are frozen into a ``RepositoryContext`` for every sweep or event, so
nothing below this module reads the environment.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)
_sweep_logger = logging.getLogger("unassign.sweep")

DEFAULT_LABEL_NAME = "issue assignee: no-response"
DEFAULT_LABEL_COLOR = "ffffff"
DEFAULT_MARK_COMMENT = "Hi @{assignee}, this issue has been marked for no response."


class ConfigurationError(ValueError):
    """Raised when the configuration cannot drive a sweep."""


# ── Config Models ────────────────────────────────────────────────────────────


class _KebabModel(BaseModel):
    """Accepts both ``days-until-unassign`` and ``days_until_unassign`` keys."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=lambda name: name.replace("_", "-"),
    )


class LabelSettings(_KebabModel):
    name: str = DEFAULT_LABEL_NAME
    color: str = DEFAULT_LABEL_COLOR

    @field_validator("color")
    @classmethod
    def _validate_color(cls, v: str) -> str:
        v = v.lstrip("#").lower()
        if len(v) != 6 or any(c not in "0123456789abcdef" for c in v):
            raise ValueError(f"label color must be a 6-digit hex value, got {v!r}")
        return v


class SweepSettings(_KebabModel):
    """Per-repository lifecycle policy."""

    days_until_no_response: float | None = None
    days_until_unassign: float | None = None
    perform: bool = False
    label: LabelSettings = Field(default_factory=LabelSettings)
    mark_comment: str = DEFAULT_MARK_COMMENT  # {assignee} is replaced with the login
    unassign_comment: str | None = None
    unmark_comment: str | None = None

    @field_validator("days_until_no_response", "days_until_unassign")
    @classmethod
    def _validate_days(cls, v: float | None) -> float | None:
        if v is not None and (not math.isfinite(v) or v < 0):
            raise ValueError(f"staleness threshold must be a finite, non-negative number, got {v}")
        return v

    @property
    def dry_run(self) -> bool:
        return not self.perform

    @property
    def unassign_enabled(self) -> bool:
        return self.days_until_unassign is not None

    def require_days_until_no_response(self) -> float:
        if self.days_until_no_response is None:
            raise ConfigurationError(
                "days-until-no-response is not configured "
                "(set it in config.yaml or DAYS_UNTIL_NO_RESPONSE)"
            )
        return self.days_until_no_response

    def render_mark_comment(self, assignee: str) -> str:
        return self.mark_comment.replace("{assignee}", assignee)


class ScheduleSettings(_KebabModel):
    checking_interval: float = 60  # minutes
    disable_delay: bool = False
    repositories: list[str] = Field(default_factory=list)  # owner/repo; empty = installation

    @field_validator("checking_interval")
    @classmethod
    def _validate_interval(cls, v: float) -> float:
        if not math.isfinite(v) or v <= 0:
            raise ValueError(f"checking-interval must be a finite positive number, got {v}")
        return v

    @field_validator("repositories")
    @classmethod
    def _validate_repositories(cls, v: list[str]) -> list[str]:
        for full_name in v:
            owner, _, repo = full_name.partition("/")
            if not owner or not repo or "/" in repo:
                raise ValueError(f"repository must be 'owner/repo', got {full_name!r}")
        return v


class AppSettings(_KebabModel):
    bot_username: str = "unassign[bot]"  # GitHub App bot login for self-event filtering
    webhook_rate_limit: int = 60  # deliveries per minute (0 = unlimited)


class UnassignConfig(_KebabModel):
    """Top-level configuration (matches config.yaml)."""

    sweep: SweepSettings = Field(default_factory=SweepSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    app: AppSettings = Field(default_factory=AppSettings)


# ── Repository Context ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class RepositoryContext:
    """Immutable per-invocation view of one repository and its policy."""

    owner: str
    repo: str
    settings: SweepSettings
    logger: logging.Logger = field(default=_sweep_logger, compare=False)

    @classmethod
    def for_repository(
        cls, full_name: str, settings: SweepSettings, log: logging.Logger | None = None
    ) -> RepositoryContext:
        owner, _, repo = full_name.partition("/")
        if not owner or not repo:
            raise ValueError(f"repository must be 'owner/repo', got {full_name!r}")
        return cls(
            owner=owner,
            repo=repo,
            settings=settings.model_copy(deep=True),
            logger=log or _sweep_logger,
        )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def label_name(self) -> str:
        return self.settings.label.name

    def ref(self, number: int) -> str:
        """``owner/repo#number`` for log lines."""
        return f"{self.owner}/{self.repo}#{number}"


# ── Config Loader ────────────────────────────────────────────────────────────

_TRUE = ("1", "true", "yes", "on")

# env var → (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DAYS_UNTIL_NO_RESPONSE": ("sweep", "days_until_no_response"),
    "DAYS_UNTIL_UNASSIGN": ("sweep", "days_until_unassign"),
    "PERFORM": ("sweep", "perform"),
    "CHECKING_INTERVAL": ("schedule", "checking_interval"),
    "DISABLE_DELAY": ("schedule", "disable_delay"),
}


def _apply_env_overrides(raw: dict, environ: dict[str, str]) -> dict:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value.strip() == "":
            continue
        target = raw.setdefault(section, {})
        # Drop any kebab-case spelling from the file so the override wins
        target.pop(key.replace("_", "-"), None)
        if key in ("perform", "disable_delay"):
            target[key] = value.strip().lower() in _TRUE
        else:
            target[key] = value.strip()

    repositories = environ.get("UNASSIGN_REPOSITORIES")
    if repositories:
        schedule = raw.setdefault("schedule", {})
        schedule.pop("repositories", None)
        schedule["repositories"] = [r.strip() for r in repositories.split(",") if r.strip()]
    return raw


def load_config(config_dir: Path | None = None, environ: dict[str, str] | None = None) -> UnassignConfig:
    """Load configuration from ``config_dir/config.yaml`` plus environment overrides.

    The file is optional; a deployment can be configured entirely through
    environment variables.

    Raises:
        ConfigurationError: If the file or the overrides fail validation.
    """
    environ = dict(os.environ) if environ is None else environ
    raw: dict = {}

    if config_dir is not None:
        config_path = config_dir / "config.yaml"
        if config_path.exists():
            with open(config_path) as f:
                try:
                    raw = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(raw, dict):
                raise ConfigurationError(f"{config_path} must contain a mapping")
        else:
            logger.info("No config file at %s, using environment only", config_path)

    raw = _apply_env_overrides(raw, environ)

    try:
        config = UnassignConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if config.sweep.days_until_no_response is None:
        logger.warning("days-until-no-response is not set; sweeps will fail until it is")

    logger.info(
        "Loaded config: no-response=%s days, unassign=%s days, perform=%s",
        config.sweep.days_until_no_response,
        config.sweep.days_until_unassign,
        config.sweep.perform,
    )
    return config
