"""
Secure Logging Utility - HIPAA-Compliant

Alert triage logs carry patient and clinician identifiers, never contact
details or free-text clinical notes.
- Email addresses and phone numbers are masked
- Token-like strings are masked
- Audit events are emitted as structured JSON on the "audit" logger
"""

import logging
import re
import sys
import json
from typing import Optional, Dict, Any
from datetime import datetime

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module"""
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    return logger


class SecureLogger:
    """
    Secure logging wrapper that prevents contact details leaking into logs
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    PHONE_PATTERN = re.compile(r'\+?\d[\d\s().-]{8,}\d')
    TOKEN_PATTERN = re.compile(r'\b[A-Za-z0-9]{40,}\b')

    @classmethod
    def sanitize_message(cls, message: str) -> str:
        """
        Mask contact details and tokens in a log message

        Args:
            message: Original log message

        Returns:
            Sanitized log message
        """
        message = cls.EMAIL_PATTERN.sub('[email]', message)
        message = cls.PHONE_PATTERN.sub('[phone]', message)
        message = cls.TOKEN_PATTERN.sub('[token]', message)

        # Keep first line of stack traces only
        if '\n' in message:
            message = message.split('\n')[0] + ' [stack trace truncated]'

        return message

    @classmethod
    def log(cls, logger: logging.Logger, level: int, message: str, *args, **kwargs):
        sanitized = cls.sanitize_message(message)
        if sanitized != message:
            logger.log(level, f"[SANITIZED] {sanitized}", *args, **kwargs)
        else:
            logger.log(level, message, *args, **kwargs)


def log_error(message: str, logger_name: Optional[str] = None, exc_info: bool = False, **kwargs):
    """Log error message securely"""
    logger = get_logger(logger_name or __name__)
    if exc_info:
        kwargs['exc_info'] = True
    SecureLogger.log(logger, logging.ERROR, message, **kwargs)


def log_audit(event_type: str, user_id: Optional[str], details: Dict[str, Any]):
    """
    Log audit event with structured data

    Args:
        event_type: Type of audit event (e.g. ALERT_CLAIMED)
        user_id: Acting user ID, None for system actions
        details: Additional event details, must be JSON serializable
    """
    logger = get_logger("audit")
    audit_entry = {
        "timestamp": datetime.utcnow().isoformat(),
        "event_type": event_type,
        "user_id": user_id,
        "details": details
    }
    logger.info(f"[AUDIT] {json.dumps(audit_entry, default=str)}")
