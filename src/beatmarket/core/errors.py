"""
Service Error Taxonomy
Exceptions raised by services and rendered by the API layer
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base service error carrying an HTTP status and an optional remediation hint"""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        fix: Optional[str] = None,
        status_code: Optional[int] = None,
        **extra: Any
    ):
        super().__init__(message)
        self.message = message
        self.fix = fix
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.fix:
            body["fix"] = self.fix
        body.update(self.extra)
        return body


class ValidationError(ServiceError):
    """Bad or missing input"""
    status_code = 400


class AuthenticationError(ServiceError):
    """Missing or wrong credential or shared secret"""
    status_code = 401


class PreconditionError(ServiceError):
    """Agent configuration does not allow the operation"""
    status_code = 403


class ForbiddenError(ServiceError):
    status_code = 403


class ResourceNotFoundError(ServiceError):
    status_code = 404


class DuplicateRequestError(ServiceError):
    """Another request for the same work is still in flight"""
    status_code = 409


class GoneError(ServiceError):
    """Resource existed but is sold, deleted or expired"""
    status_code = 410


class RateLimitedError(ServiceError):
    status_code = 429


class ProviderError(ServiceError):
    """Upstream provider or payment processor failure"""
    status_code = 502


class IntegrityViolation(ServiceError):
    """Signature mismatch, amount mismatch or unsafe URL"""
    status_code = 403
