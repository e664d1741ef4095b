"""
Error taxonomy and the {success, data, message, errors} response envelope.
"""
from typing import Any, Dict, List, Optional


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_body(self) -> Dict[str, Any]:
        return envelope(False, message=self.message)


class ValidationError(ApiError):
    """Payload failed schema constraints or a cross-field check."""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        if errors is None:
            errors = [{"field": field or "body", "message": message}]
        self.errors = errors

    def to_body(self) -> Dict[str, Any]:
        return envelope(False, message=self.message, errors=self.errors)


class NotFoundError(ApiError):
    status_code = 404


class InternalError(ApiError):
    status_code = 500


def envelope(success: bool, data: Any = None, message: Optional[str] = None, errors: Optional[list] = None, count: Optional[int] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success}
    if count is not None:
        body["count"] = count
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    if errors is not None:
        body["errors"] = errors
    return body


def field_errors(raw_errors) -> List[Dict[str, str]]:
    """Flatten pydantic error dicts into [{field, message}]."""
    out = []
    for err in raw_errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        out.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return out
