"""
Configuration validation run once before the relay connects.

- Required credentials are present
- Numeric timings are within sane ranges
- The selected notification target is fully configured
- Warnings for configurations that work but are likely mistakes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logs warning but allows startup
    INFO = auto()     # Informational only


@dataclass
class ValidationIssue:
    """A single validation issue."""
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of config validation."""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    def has_warnings(self) -> bool:
        return any(i.severity == ValidationSeverity.WARNING for i in self.issues)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]


class ConfigValidator:
    """
    Validates Settings before the connection manager starts.

    Missing credentials are errors: the login handshake cannot be signed
    without the secret, so there is no point opening a socket.
    """

    # (min, max) per numeric field
    NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
        "heartbeat_sec": (1.0, 29.0),
        "reconnect_delay_sec": (0.0, 600.0),
        "connect_timeout_sec": (1.0, 120.0),
        "notify_timeout_sec": (1.0, 120.0),
    }

    REQUIRED_STRINGS: Dict[str, str] = {
        "api_key": "OKX_API_KEY",
        "secret_key": "OKX_SECRET_KEY",
        "passphrase": "OKX_PASSPHRASE",
    }

    # notify_type -> required fields
    NOTIFY_REQUIREMENTS: Dict[str, Dict[str, str]] = {
        "wechat": {
            "wechat_api_url": "WECHAT_API_URL",
            "wechat_openid": "WECHAT_OPENID",
            "wechat_template_id": "WECHAT_TEMPLATE_ID",
        },
        "generic": {
            "webhook_url": "WEBHOOK_URL",
        },
    }

    def validate(self, cfg) -> ValidationResult:
        issues: List[ValidationIssue] = []
        issues.extend(self._validate_required_strings(cfg))
        issues.extend(self._validate_numeric_ranges(cfg))
        issues.extend(self._validate_notify_target(cfg))
        issues.extend(self._check_risky_configs(cfg))
        has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return ValidationResult(valid=not has_errors, issues=issues)

    def _validate_required_strings(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, env_name in self.REQUIRED_STRINGS.items():
            value = getattr(cfg, field_name, None)
            if not value or not str(value).strip():
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"Required credential '{field_name}' is missing or empty",
                    severity=ValidationSeverity.ERROR,
                    suggestion=f"Set {env_name}",
                ))
        return issues

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, (min_val, max_val) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, field_name, None)
            if value is None:
                continue
            try:
                num_value = float(value)
            except (TypeError, ValueError):
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' has invalid numeric value: {value}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                ))
                continue
            if num_value < min_val or num_value > max_val:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {num_value} is outside [{min_val}, {max_val}]",
                    severity=ValidationSeverity.ERROR,
                    value=num_value,
                ))
        return issues

    def _validate_notify_target(self, cfg) -> List[ValidationIssue]:
        # A relay without a target still connects and logs orders, so only warn.
        issues = []
        notify_type = getattr(cfg, "notify_type", "wechat")
        for field_name, env_name in self.NOTIFY_REQUIREMENTS.get(notify_type, {}).items():
            if not getattr(cfg, field_name, None):
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"{notify_type} notifications enabled but '{field_name}' is not set",
                    severity=ValidationSeverity.WARNING,
                    suggestion=f"Set {env_name}",
                ))
        return issues

    def _check_risky_configs(self, cfg) -> List[ValidationIssue]:
        issues = []
        reconnect = getattr(cfg, "reconnect_delay_sec", 5.0)
        if reconnect < 1.0:
            issues.append(ValidationIssue(
                field="reconnect_delay_sec",
                message=f"Reconnect delay {reconnect}s may hammer the exchange during an outage",
                severity=ValidationSeverity.WARNING,
                value=reconnect,
            ))
        liveness = getattr(cfg, "liveness_timeout_sec", 0.0)
        heartbeat = getattr(cfg, "heartbeat_sec", 25.0)
        if 0 < liveness <= heartbeat:
            issues.append(ValidationIssue(
                field="liveness_timeout_sec",
                message=f"Liveness timeout {liveness}s is not longer than the heartbeat {heartbeat}s",
                severity=ValidationSeverity.WARNING,
                value=liveness,
                suggestion="Use at least twice the heartbeat interval",
            ))
        if getattr(cfg, "http_port", 0) and not getattr(cfg, "http_token", None):
            issues.append(ValidationIssue(
                field="http_token",
                message="Status server has no token; /logs and /test-notify are open",
                severity=ValidationSeverity.WARNING,
                suggestion="Set RELAY_HTTP_TOKEN",
            ))
        return issues


def validate_config(cfg) -> ValidationResult:
    return ConfigValidator().validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """
    Validate config and log all issues.

    Returns:
        True if config is valid (no errors), False otherwise
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        msg = f"CONFIG ERROR: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.error(msg)

    for issue in result.get_warnings():
        msg = f"CONFIG WARNING: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.warning(msg)

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")

    return result.valid
