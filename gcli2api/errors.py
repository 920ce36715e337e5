"""
Error types and the OpenAI-style error envelope.
"""

from typing import Optional, Dict, Any


def error_payload(message: str, error_type: str = "api_error", code: int = 500) -> Dict[str, Any]:
    """构造 {"error": {"message", "type", "code"}} 结构"""
    return {
        "error": {
            "message": message,
            "type": error_type,
            "code": code,
        }
    }


class GatewayError(Exception):
    """Base class for errors that are rendered to the client as a JSON envelope."""

    status_code: int = 500
    error_type: str = "api_error"

    def __init__(self, message: str, status_code: Optional[int] = None, error_type: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type

    def to_payload(self) -> Dict[str, Any]:
        return error_payload(self.message, self.error_type, self.status_code)


class AuthenticationError(GatewayError):
    status_code = 403
    error_type = "authentication_error"


class NoCredentialsError(GatewayError):
    """No credential file is usable (empty directory or all disabled/broken)."""

    status_code = 400
    error_type = "invalid_request_error"


class MissingProjectError(GatewayError):
    """The selected credential has no project_id; another credential may still work."""

    status_code = 400
    error_type = "invalid_request_error"


class UpstreamError(GatewayError):
    """Vendor returned a non-success status or a payload we could not use."""

    error_type = "api_error"

    def __init__(self, message: str, status_code: int = 500, body: str = ""):
        super().__init__(message, status_code=status_code)
        self.body = body


class CredentialRefreshError(UpstreamError):
    pass


class OnboardingError(UpstreamError):
    pass


class OnboardingTimeoutError(OnboardingError):
    pass
