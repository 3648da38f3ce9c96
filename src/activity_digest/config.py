"""
Configuration loading for the activity digest.

Settings are read from a TOML file. The lookup order is:

1. Explicit ``ACTIVITY_DIGEST_CONFIG`` environment variable.
2. ``.secrets/secret.toml`` then ``.secrets/secrets.toml`` relative to the CWD.
3. ``.secrets/secrets.example.toml`` for scaffolding values.

Per-source environment variables (``GITLAB_ENABLED``, ``GITLAB_BASE_URL``,
``GITLAB_ACCESS_TOKEN``, ``GITLAB_PROJECT_IDS``) take precedence over the file.

Example::

    timezone = "UTC"
    trace = false

    [gitlab]
    enabled = true
    base_url = "https://gitlab.example.com"
    access_token = "glpat-..."
    project_ids = ["42", "77"]

    [retry]
    preset = "standard"
    max_attempts = 4

    [circuit_breaker]
    failure_threshold = 3
    recovery_timeout = 120
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .core.errors import ConfigurationError
from .core.resilience import API_CIRCUIT_BREAKER, CircuitBreakerConfig, RetryPolicy, resolve_retry_preset

_ENV_CONFIG_PATH = "ACTIVITY_DIGEST_CONFIG"
DEFAULT_GITLAB_URL = "https://gitlab.com"


@dataclass(slots=True)
class GitLabSettings:
    """Connection details and feature flags for the GitLab adapter."""

    enabled: bool = True
    base_url: str = DEFAULT_GITLAB_URL
    access_token: Optional[str] = None
    project_ids: Tuple[str, ...] = ()
    fetch_commits: bool = True
    fetch_merge_requests: bool = True
    fetch_issues: bool = True
    requests_per_second: float = 10.0

    @property
    def is_complete(self) -> bool:
        return bool(self.enabled and self.base_url and self.access_token)


@dataclass(slots=True)
class ResilienceSettings:
    """Numeric retry and circuit-breaker knobs shared by all sources."""

    retry: RetryPolicy = field(default_factory=lambda: resolve_retry_preset("standard"))
    circuit_breaker: Optional[CircuitBreakerConfig] = API_CIRCUIT_BREAKER


@dataclass(slots=True)
class Settings:
    source_path: Optional[Path]
    data: Dict[str, Any]
    gitlab: GitLabSettings = field(default_factory=GitLabSettings)
    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)
    timezone: str = "UTC"
    trace: bool = False


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_CONFIG_PATH)
    if env_override:
        yield Path(env_override).expanduser()
    secrets_dir = Path.cwd() / ".secrets"
    for filename in ("secret.toml", "secrets.toml", "secrets.example.toml"):
        yield secrets_dir / filename


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Failed to parse '{path}': {exc}", section="file", context={"path": str(path)}) from exc


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, Mapping) else {}


def _coerce_bool(value: Any, *, section: str, key: str) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Expected a boolean for {section}.{key}, got '{value}'.", section=section, field=key)


def _coerce_number(value: Any, *, section: str, key: str, cast: type = float) -> Any:
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Expected a number for {section}.{key}, got '{value}'.", section=section, field=key) from exc


def _split_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items: Sequence[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    return tuple(str(item).strip() for item in items if str(item).strip())


def _extract_gitlab(raw: Mapping[str, Any], environ: Mapping[str, str]) -> GitLabSettings:
    section = dict(_section(raw, "gitlab"))
    for env_key, key in (
        ("GITLAB_ENABLED", "enabled"),
        ("GITLAB_BASE_URL", "base_url"),
        ("GITLAB_ACCESS_TOKEN", "access_token"),
        ("GITLAB_PROJECT_IDS", "project_ids"),
    ):
        if environ.get(env_key):
            section[key] = environ[env_key]

    settings = GitLabSettings()
    if "enabled" in section:
        settings.enabled = _coerce_bool(section["enabled"], section="gitlab", key="enabled")
    if section.get("base_url"):
        settings.base_url = str(section["base_url"]).rstrip("/")
    if section.get("access_token"):
        settings.access_token = str(section["access_token"])
    settings.project_ids = _split_list(section.get("project_ids"))
    for key in ("fetch_commits", "fetch_merge_requests", "fetch_issues"):
        if key in section:
            setattr(settings, key, _coerce_bool(section[key], section="gitlab", key=key))
    if "requests_per_second" in section:
        settings.requests_per_second = _coerce_number(section["requests_per_second"], section="gitlab", key="requests_per_second")
    return settings


def _extract_resilience(raw: Mapping[str, Any]) -> ResilienceSettings:
    retry_section = _section(raw, "retry")
    policy = resolve_retry_preset(str(retry_section.get("preset", "standard")))
    overrides: Dict[str, Any] = {}
    for key, cast in (("max_attempts", int), ("base_delay", float), ("max_delay", float), ("backoff_multiplier", float), ("timeout", float)):
        if key in retry_section:
            overrides[key] = _coerce_number(retry_section[key], section="retry", key=key, cast=cast)
    if overrides:
        policy = replace(policy, **overrides)

    breaker_section = _section(raw, "circuit_breaker")
    breaker: Optional[CircuitBreakerConfig] = API_CIRCUIT_BREAKER
    if "enabled" in breaker_section and not _coerce_bool(breaker_section["enabled"], section="circuit_breaker", key="enabled"):
        breaker = None
    else:
        breaker_overrides: Dict[str, Any] = {}
        for key, cast in (("failure_threshold", int), ("recovery_timeout", float), ("half_open_max_attempts", int)):
            if key in breaker_section:
                breaker_overrides[key] = _coerce_number(breaker_section[key], section="circuit_breaker", key=key, cast=cast)
        if breaker_overrides:
            breaker = replace(API_CIRCUIT_BREAKER, **breaker_overrides)
    return ResilienceSettings(retry=policy, circuit_breaker=breaker)


def parse_settings(raw: Mapping[str, Any], *, source_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from an already-parsed TOML mapping."""

    env = os.environ if environ is None else environ
    trace = raw.get("trace", False)
    return Settings(
        source_path=source_path,
        data=dict(raw),
        gitlab=_extract_gitlab(raw, env),
        resilience=_extract_resilience(raw),
        timezone=str(raw.get("timezone") or "UTC"),
        trace=_coerce_bool(trace, section="general", key="trace"),
    )


def load_settings(path: Optional[Path] = None, *, strict: bool = False) -> Settings:
    """
    Load settings from ``path`` or the first discovered configuration file.

    Parameters
    ----------
    path:
        Explicit configuration file. Must exist when given.
    strict:
        When ``True`` raise :class:`ConfigurationError` if no file is found.
        Otherwise defaults (plus environment overrides) are returned.
    """

    if path is not None:
        if not path.is_file():
            raise ConfigurationError(f"Configuration file '{path}' does not exist.", section="file", context={"path": str(path)})
        return parse_settings(_load_toml(path), source_path=path)

    for candidate in _candidate_paths():
        if candidate.is_file():
            return parse_settings(_load_toml(candidate), source_path=candidate)

    if strict:
        raise ConfigurationError(
            f"No configuration file found. Set {_ENV_CONFIG_PATH} or create .secrets/secret.toml.",
            section="file",
        )
    return parse_settings({}, source_path=None)
