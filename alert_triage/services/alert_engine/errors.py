"""
Typed failures raised by alert lifecycle operations.

Callers get the precise reason; HTTP layers map ``status_code`` directly.
"""

from typing import Dict, Any, Optional


class AlertEngineError(Exception):
    """Base class for alert engine failures"""

    status_code = 500
    error_type = "alert_engine_error"

    def __init__(self, message: str, alert_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.alert_id = alert_id

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "error": self.message,
            "status_code": self.status_code,
            "type": self.error_type,
        }
        if self.alert_id:
            payload["alert_id"] = self.alert_id
        return payload


class AlertValidationError(AlertEngineError):
    """Missing or malformed input, rejected before any mutation"""

    status_code = 400
    error_type = "validation_error"


class AlertNotFoundError(AlertEngineError):
    """Alert, rule or target user absent"""

    status_code = 404
    error_type = "not_found"


class AlertConflictError(AlertEngineError):
    """State precondition failed (already claimed, resolved, suppressed...)"""

    status_code = 409
    error_type = "conflict"


class AlertForbiddenError(AlertEngineError):
    """Role-gated operation attempted without privilege"""

    status_code = 403
    error_type = "access_denied"
