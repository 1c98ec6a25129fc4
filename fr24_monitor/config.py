"""Configuration store for the feeder monitor.

The persisted document is a single JSON object with seven sections. Every field has a
default, so a partial document is merged over the defaults before use and missing keys
are never an error. Saves are validated as a whole and written with an atomic replace.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Literal, Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigParseError, ConfigValidationError, FieldError
from .state_files import read_json_object, write_json_atomic
from .timestamps import load_zone


logger = structlog.get_logger(__name__)

CONFIG_PATH_ENV = "FR24_MONITOR_CONFIG"
DEFAULT_CONFIG_PATH = "config.json"

SECTION_NAMES = ("monitoring", "reboot", "logging", "web", "system", "notifications", "email")
LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
SMTP_SECURITY_MODES = ("tls", "ssl", "none")

# Flags a settings write must state explicitly (see save_settings).
SETTINGS_FLAGS: dict[str, tuple[str, ...]] = {
    "reboot": ("enabled", "dry_run_mode", "send_email_alerts"),
    "logging": ("verbose_output",),
    "system": ("service_restart_enabled", "check_disk_space"),
    "notifications": ("email_enabled", "webhook_enabled"),
    "email": ("enabled",),
}


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow")


class MonitoringSettings(_Section):
    """Polling and threshold settings read by the monitor daemon each cycle."""

    check_interval_minutes: int = Field(default=10, ge=1, le=60, description="Minutes between polls")
    aircraft_threshold: int = Field(default=30, ge=0, le=1000, description="Reboot when tracked aircraft drop below this")
    minimum_uptime_hours: float = Field(default=2.0, ge=0, le=24, description="Never reboot a host younger than this")
    endpoint_timeout_seconds: int = Field(default=10, ge=1, le=60, description="HTTP timeout for the feeder endpoint")
    retry_attempts: int = Field(default=3, ge=1, le=10, description="Endpoint retries per cycle")
    retry_delay_seconds: int = Field(default=5, ge=1, le=60, description="Delay between endpoint retries")
    endpoint_url: str = Field(default="http://localhost:8754/monitor.json", description="Feeder status endpoint")


class RebootSettings(_Section):
    """Remediation policy."""

    enabled: bool = Field(default=True, description="Allow automatic reboots")
    dry_run_mode: bool = Field(default=False, description="Log decisions without acting on them")
    reboot_delay_seconds: int = Field(default=300, ge=0, le=3600, description="Grace period before acting")
    send_email_alerts: bool = Field(default=True, description="Alert before rebooting")


class LoggingSettings(_Section):
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = Field(default="INFO")
    max_log_size_mb: int = Field(default=2, ge=1, le=1000)
    keep_log_files: int = Field(default=2, ge=1, le=30)
    database_retention_days: int = Field(default=365, ge=1, le=3650)
    verbose_output: bool = Field(default=False)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            s = value.strip().upper()
            return "WARN" if s == "WARNING" else s
        return value


class WebSettings(_Section):
    """Dashboard settings; ``timezone`` is the configured display zone."""

    port: int = Field(default=6869, ge=1024, le=65535)
    auto_refresh_seconds: int = Field(default=60, ge=10, le=600)
    max_reboot_history: int = Field(default=50, ge=10, le=500)
    timezone: str = Field(default="Europe/London")

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        name = value.strip()
        if not name:
            raise ValueError("timezone must not be empty")
        if load_zone(name) is None:
            raise ValueError(f"unknown timezone {name!r}")
        return name


class SystemSettings(_Section):
    service_name: str = Field(default="fr24feed")
    service_restart_enabled: bool = Field(default=True)
    service_restart_delay_seconds: int = Field(default=30, ge=0, le=300)
    check_disk_space: bool = Field(default=True)
    min_disk_space_gb: float = Field(default=1.0, ge=0, le=100)


class NotificationSettings(_Section):
    email_enabled: bool = Field(default=False)
    webhook_enabled: bool = Field(default=False)
    webhook_url: str = Field(default="")
    notification_cooldown_minutes: int = Field(default=60, ge=1, le=1440)


class EmailSettings(_Section):
    """SMTP settings. ``use_tls``/``use_starttls`` are always derived from ``smtp_security``."""

    enabled: bool = Field(default=False)
    smtp_host: str = Field(default="")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_security: Literal["tls", "ssl", "none"] = Field(default="tls")
    use_tls: bool = Field(default=True)
    use_starttls: bool = Field(default=True)
    smtp_username: str = Field(default="")
    smtp_password: str = Field(default="")
    from_email: str = Field(default="")
    from_name: str = Field(default="FR24 Monitor")
    to_email: str = Field(default="")
    subject: str = Field(default="FR24 Monitor Alert: System Reboot Required")

    @field_validator("smtp_security", mode="before")
    @classmethod
    def _normalize_security(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _derive_tls_flags(self) -> "EmailSettings":
        starttls = self.smtp_security == "tls"
        self.use_tls = starttls
        self.use_starttls = starttls
        return self


class Configuration(BaseModel):
    """The complete, defaulted configuration document."""

    model_config = ConfigDict(extra="allow")

    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    reboot: RebootSettings = Field(default_factory=RebootSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    web: WebSettings = Field(default_factory=WebSettings)
    system: SystemSettings = Field(default_factory=SystemSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None and str(path).strip():
        return Path(path)
    return Path(os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))


def default_config() -> Configuration:
    return Configuration()


def _security_flag(mode: Any) -> bool:
    return isinstance(mode, str) and mode.strip().lower() == "tls"


def merge_defaults(partial: Mapping[str, Any] | Configuration | None) -> dict[str, Any]:
    """
    Deep-merge ``partial`` over the default document, section by section and field by field.

    Unknown keys are carried over untouched. Sections that are not objects are replaced by
    their defaults. The TLS flags are recomputed from ``smtp_security`` so the result is
    always consistent; applying the merge twice gives the same document.
    """
    if isinstance(partial, Configuration):
        partial = partial.to_document()
    merged = default_config().to_document()
    if not isinstance(partial, Mapping):
        return merged

    for key, value in partial.items():
        if key in SECTION_NAMES:
            if not isinstance(value, Mapping):
                logger.warning("Config section is not an object; using defaults", section=key)
                continue
            section = dict(merged[key])
            section.update(copy.deepcopy(dict(value)))
            merged[key] = section
        else:
            merged[key] = copy.deepcopy(value)

    email = merged["email"]
    email["use_tls"] = email["use_starttls"] = _security_flag(email.get("smtp_security"))
    return merged


def _field_errors(exc: ValidationError) -> list[FieldError]:
    out: list[FieldError] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc") or ()) or "<root>"
        out.append(FieldError(field=loc, message=str(err.get("msg") or "invalid"), value=err.get("input")))
    return out


def validate_config(document: Mapping[str, Any] | Configuration) -> list[FieldError]:
    """Range and domain checks for a (possibly partial) document. Empty list means valid."""
    if isinstance(document, Configuration):
        document = document.to_document()
    if not isinstance(document, Mapping):
        return [FieldError(field="<root>", message="configuration must be an object", value=document)]

    errors: list[FieldError] = []
    for section in SECTION_NAMES:
        if section in document and not isinstance(document[section], Mapping):
            errors.append(FieldError(field=section, message="section must be an object", value=document[section]))
    if errors:
        return errors

    try:
        Configuration.model_validate(merge_defaults(document))
    except ValidationError as exc:
        return _field_errors(exc)
    return []


def _build_lenient(raw: Mapping[str, Any]) -> Configuration:
    merged = merge_defaults(raw)
    try:
        return Configuration.model_validate(merged)
    except ValidationError as exc:
        defaults = default_config().to_document()
        for err in exc.errors():
            loc = tuple(err.get("loc") or ())
            if len(loc) >= 2 and loc[0] in SECTION_NAMES and loc[1] in defaults[loc[0]]:
                merged[loc[0]][loc[1]] = defaults[loc[0]][loc[1]]
                logger.warning(
                    "Invalid config value; using default",
                    field=f"{loc[0]}.{loc[1]}",
                    error=err.get("msg"),
                )
            elif loc and loc[0] in SECTION_NAMES:
                merged[loc[0]] = copy.deepcopy(defaults[loc[0]])
                logger.warning("Invalid config section; using defaults", section=loc[0], error=err.get("msg"))

    try:
        return Configuration.model_validate(merged)
    except ValidationError as exc:
        logger.warning("Config could not be repaired; using defaults", error=str(exc))
        return default_config()


def load_config(path: str | Path | None = None) -> Configuration:
    """
    Load the persisted configuration, merged over the defaults.

    Never raises for a missing, unreadable or malformed document: the full default
    configuration is returned instead and the problem is logged.
    """
    p = resolve_config_path(path)
    try:
        raw = read_json_object(p)
    except FileNotFoundError:
        logger.debug("Config file not found; using defaults", path=str(p))
        return default_config()
    except ConfigParseError as exc:
        logger.warning("Config file unreadable; using defaults", path=str(p), error=str(exc))
        return default_config()
    return _build_lenient(raw)


def save_config(config: Configuration | Mapping[str, Any], path: str | Path | None = None) -> Configuration:
    """
    Validate and persist ``config`` as a whole.

    Any out-of-range field rejects the entire save with ConfigValidationError and the file
    on disk is left as it was. I/O failures raise PersistenceError.
    """
    document = config.to_document() if isinstance(config, Configuration) else config
    errors = validate_config(document)
    if errors:
        logger.warning("Rejected config save", errors=[str(e) for e in errors])
        raise ConfigValidationError(errors)

    validated = Configuration.model_validate(merge_defaults(document))
    p = resolve_config_path(path)
    write_json_atomic(p, validated.to_document())
    logger.info("Saved config", path=str(p))
    return validated


def missing_settings_flags(submission: Mapping[str, Any]) -> list[FieldError]:
    out: list[FieldError] = []
    for section, flags in SETTINGS_FLAGS.items():
        values = submission.get(section) if isinstance(submission, Mapping) else None
        for flag in flags:
            if not isinstance(values, Mapping) or flag not in values:
                out.append(
                    FieldError(
                        field=f"{section}.{flag}",
                        message="required on settings writes; send true or false explicitly",
                    )
                )
    return out


def save_settings(submission: Mapping[str, Any], path: str | Path | None = None) -> Configuration:
    """
    The settings write path: a full replacement of the document.

    A sparse submission that omits any boolean flag is rejected, so a flag whose default
    is ``true`` (``reboot.enabled``) can never be flipped by leaving it out.
    """
    missing = missing_settings_flags(submission)
    if missing:
        raise ConfigValidationError(missing)
    return save_config(submission, path)


def reset_config(path: str | Path | None = None) -> Configuration:
    config = default_config()
    p = resolve_config_path(path)
    write_json_atomic(p, config.to_document())
    logger.info("Reset config to defaults", path=str(p))
    return config


# Flat field names used by the settings form -> (section, field).
_FORM_FIELDS: dict[str, tuple[str, str]] = {
    "check_interval_minutes": ("monitoring", "check_interval_minutes"),
    "aircraft_threshold": ("monitoring", "aircraft_threshold"),
    "minimum_uptime_hours": ("monitoring", "minimum_uptime_hours"),
    "endpoint_timeout_seconds": ("monitoring", "endpoint_timeout_seconds"),
    "retry_attempts": ("monitoring", "retry_attempts"),
    "retry_delay_seconds": ("monitoring", "retry_delay_seconds"),
    "endpoint_url": ("monitoring", "endpoint_url"),
    "reboot_delay_seconds": ("reboot", "reboot_delay_seconds"),
    "log_level": ("logging", "log_level"),
    "max_log_size_mb": ("logging", "max_log_size_mb"),
    "keep_log_files": ("logging", "keep_log_files"),
    "database_retention_days": ("logging", "database_retention_days"),
    "web_port": ("web", "port"),
    "auto_refresh_seconds": ("web", "auto_refresh_seconds"),
    "max_reboot_history": ("web", "max_reboot_history"),
    "web_timezone": ("web", "timezone"),
    "service_name": ("system", "service_name"),
    "service_restart_delay_seconds": ("system", "service_restart_delay_seconds"),
    "min_disk_space_gb": ("system", "min_disk_space_gb"),
    "webhook_url": ("notifications", "webhook_url"),
    "notification_cooldown_minutes": ("notifications", "notification_cooldown_minutes"),
    "smtp_host": ("email", "smtp_host"),
    "smtp_port": ("email", "smtp_port"),
    "smtp_security": ("email", "smtp_security"),
    "smtp_username": ("email", "smtp_username"),
    "smtp_password": ("email", "smtp_password"),
    "from_email": ("email", "from_email"),
    "from_name": ("email", "from_name"),
    "to_email": ("email", "to_email"),
    "subject": ("email", "subject"),
}

_FORM_CHECKBOXES: dict[str, tuple[str, str]] = {
    "reboot_enabled": ("reboot", "enabled"),
    "dry_run_mode": ("reboot", "dry_run_mode"),
    "send_email_alerts": ("reboot", "send_email_alerts"),
    "verbose_output": ("logging", "verbose_output"),
    "service_restart_enabled": ("system", "service_restart_enabled"),
    "check_disk_space": ("system", "check_disk_space"),
    "email_enabled": ("notifications", "email_enabled"),
    "webhook_enabled": ("notifications", "webhook_enabled"),
}

_FORM_UNTRIMMED = {"smtp_password"}


def config_from_form(form: Mapping[str, Any]) -> dict[str, Any]:
    """
    Decode a settings-form submission into a complete document.

    The form renders every checkbox, so an absent checkbox is an explicit ``false``.
    Absent text fields fall back to their defaults on merge.
    """
    document: dict[str, dict[str, Any]] = {section: {} for section in SECTION_NAMES}
    for name, (section, field) in _FORM_FIELDS.items():
        if name not in form:
            continue
        value = form[name]
        if isinstance(value, str) and name not in _FORM_UNTRIMMED:
            value = value.strip()
        document[section][field] = value
    for name, (section, field) in _FORM_CHECKBOXES.items():
        document[section][field] = name in form
    document["email"]["enabled"] = document["notifications"]["email_enabled"]
    return merge_defaults(document)


def import_legacy_email_config(path: str | Path) -> dict[str, Any]:
    """
    Read the older stand-alone flat email document and return an ``email`` section.

    That document stored the login as ``smtp_user``; it is mapped onto ``smtp_username``.
    Raises FileNotFoundError or ConfigParseError.
    """
    raw = read_json_object(Path(path))
    section: dict[str, Any] = {}
    for key, value in raw.items():
        if key in ("smtp_user", "use_tls", "use_starttls"):
            continue
        section[key] = value
    legacy_user = raw.get("smtp_user")
    if isinstance(legacy_user, str) and legacy_user.strip() and not str(section.get("smtp_username") or "").strip():
        section["smtp_username"] = legacy_user
    return section
