"""
Security Audit Logging for the OpenID provider

Emits one structured JSON line per security event to the
``security_audit`` logger:
- Client authentication attempts and failures
- Authorization requests accepted or rejected
- Code and token lifecycle events
- Replay signals (code reuse, refresh token reuse) and family revocations
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from dataclasses import dataclass
from enum import Enum
import hashlib


class AuditEventType(Enum):
    """Types of security audit events"""

    # Client authentication
    CLIENT_AUTH_SUCCESS = "client_auth_success"
    CLIENT_AUTH_FAILURE = "client_auth_failure"
    CLIENT_ASSERTION_REPLAY = "client_assertion_replay"

    # Authorization endpoint
    AUTHZ_REQUEST_ACCEPTED = "authz_request_accepted"
    AUTHZ_REQUEST_REJECTED = "authz_request_rejected"
    AUTHZ_INVALID_REDIRECT = "authz_invalid_redirect"
    AUTHZ_LOGIN_COMPLETED = "authz_login_completed"
    AUTHZ_ACCESS_DENIED = "authz_access_denied"

    # Codes
    CODE_ISSUED = "code_issued"
    CODE_EXCHANGED = "code_exchanged"
    CODE_REUSE_DETECTED = "code_reuse_detected"
    PKCE_FAILURE = "pkce_failure"

    # Tokens
    TOKEN_ISSUED = "token_issued"
    TOKEN_REFRESHED = "token_refreshed"
    TOKEN_REVOKED = "token_revoked"
    REFRESH_REUSE_DETECTED = "refresh_reuse_detected"
    TOKEN_FAMILY_REVOKED = "token_family_revoked"

    # Logout
    END_SESSION = "end_session"
    LOGOUT_REDIRECT_REJECTED = "logout_redirect_rejected"


# Events that indicate possible compromise
HIGH_RISK_EVENTS = {
    AuditEventType.CODE_REUSE_DETECTED: 80,
    AuditEventType.REFRESH_REUSE_DETECTED: 80,
    AuditEventType.CLIENT_ASSERTION_REPLAY: 80,
    AuditEventType.TOKEN_FAMILY_REVOKED: 70,
    AuditEventType.AUTHZ_INVALID_REDIRECT: 60,
    AuditEventType.PKCE_FAILURE: 50,
    AuditEventType.CLIENT_AUTH_FAILURE: 50,
    AuditEventType.LOGOUT_REDIRECT_REJECTED: 40,
}


@dataclass
class AuditEvent:
    """Security audit event data structure"""

    event_type: AuditEventType
    timestamp: datetime
    subject: Optional[str] = None
    client_id: Optional[str] = None
    request_id: Optional[str] = None
    scope: Optional[str] = None
    success: bool = True
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    risk_score: int = 0  # 0-100, higher = more suspicious

    def __post_init__(self):
        if self.details is None:
            self.details = {}
        if not self.timestamp.tzinfo:
            self.timestamp = self.timestamp.replace(tzinfo=timezone.utc)


class SecurityAuditLogger:
    """
    Structured security audit logger

    Subjects are hashed before they are written; logging failures are
    reported on the audit logger itself and never propagate.
    """

    def __init__(self,
                 logger_name: str = "security_audit",
                 enable_pii_hashing: bool = True,
                 hash_salt: str = "oidc-op-audit-salt",
                 max_details_length: int = 2048):
        self.logger = logging.getLogger(logger_name)
        self.enable_pii_hashing = enable_pii_hashing
        self.hash_salt = hash_salt
        self.max_details_length = max_details_length

    def log_event(self, event: AuditEvent) -> None:
        try:
            if event.risk_score == 0:
                event.risk_score = HIGH_RISK_EVENTS.get(event.event_type, 0 if event.success else 30)

            if self.enable_pii_hashing and event.subject:
                event.subject = self._hash_value(event.subject)

            log_entry = self._format_log_entry(event)

            if event.success and event.risk_score < 30:
                self.logger.info(log_entry)
            elif event.risk_score >= 70:
                self.logger.error(log_entry)
            else:
                self.logger.warning(log_entry)

        except Exception as e:
            # Audit logging must never break a protocol response
            self.logger.error(f"Failed to log audit event: {e}")

    def record(self, event_type: AuditEventType, success: bool = True, **fields) -> None:
        """Build and log an event; unknown keyword fields go into details"""
        known = {k: fields.pop(k) for k in list(fields)
                 if k in ("subject", "client_id", "request_id", "scope", "error_code", "error_message")}
        self.log_event(AuditEvent(
            event_type=event_type,
            timestamp=datetime.now(timezone.utc),
            success=success,
            details=fields,
            **known,
        ))

    def log_client_auth_failure(self, client_id: Optional[str], auth_method: Optional[str],
                                error_message: str) -> None:
        self.record(AuditEventType.CLIENT_AUTH_FAILURE, success=False, client_id=client_id,
                    error_code="invalid_client", error_message=error_message, auth_method=auth_method)

    def log_token_issued(self, subject: str, client_id: str, scope: str,
                         token_types: list, grant_type: str) -> None:
        self.record(AuditEventType.TOKEN_ISSUED, subject=subject, client_id=client_id,
                    scope=scope, token_types=token_types, grant_type=grant_type)

    def _hash_value(self, value: str) -> str:
        salted_value = f"{value}{self.hash_salt}"
        return hashlib.sha256(salted_value.encode()).hexdigest()[:16]

    def _format_log_entry(self, event: AuditEvent) -> str:
        log_data = {
            "event_type": event.event_type.value,
            "timestamp": event.timestamp.isoformat(),
            "success": event.success,
            "risk_score": event.risk_score
        }

        optional_fields = [
            "subject", "client_id", "request_id", "scope",
            "error_code", "error_message"
        ]
        for field in optional_fields:
            value = getattr(event, field)
            if value:
                log_data[field] = value

        if event.details:
            details_str = json.dumps(event.details, default=str)
            if len(details_str) > self.max_details_length:
                details_str = details_str[:self.max_details_length] + "..."
            log_data["details"] = details_str

        return json.dumps(log_data, separators=(',', ':'))


# Global audit logger instances, one per logger name
_security_audit_loggers: Dict[str, SecurityAuditLogger] = {}


def get_security_audit_logger(logger_name: str = "security_audit") -> SecurityAuditLogger:
    """Get or create security audit logger instance"""
    if logger_name not in _security_audit_loggers:
        _security_audit_loggers[logger_name] = SecurityAuditLogger(logger_name=logger_name)
    return _security_audit_loggers[logger_name]
