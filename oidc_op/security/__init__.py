"""
Security Module for the OpenID provider

- Input validation of protocol parameters
- Security audit logging
"""

from .validators import InputValidator, OAuthValidator, ValidationError, JWT_BEARER_ASSERTION
from .audit_logger import SecurityAuditLogger, AuditEvent, AuditEventType, get_security_audit_logger

__all__ = [
    'InputValidator',
    'OAuthValidator',
    'ValidationError',
    'JWT_BEARER_ASSERTION',
    'SecurityAuditLogger',
    'AuditEvent',
    'AuditEventType',
    'get_security_audit_logger'
]
