"""
Result Pattern Implementation
Outcome of an outbound provider, payment or email call
"""

from typing import Generic, TypeVar, Optional
from pydantic import BaseModel, ConfigDict

T = TypeVar('T')


class Result(BaseModel, Generic[T]):
    """
    Success flag plus payload, or an error message plus the upstream HTTP
    status when there was one. Clients never raise for remote failures;
    services decide what a failure means for the caller.
    """
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def ok(cls, data: T = None) -> 'Result[T]':
        return cls(success=True, data=data)

    @classmethod
    def err(cls, error: str, status_code: Optional[int] = None) -> 'Result[T]':
        return cls(success=False, error=error, status_code=status_code)

    def is_ok(self) -> bool:
        return self.success

    def is_err(self) -> bool:
        return not self.success

    def upstream_status(self, default: int = 502) -> int:
        """HTTP status to surface for a failed call; unknown failures map to bad gateway"""
        if self.status_code and self.status_code >= 400:
            return self.status_code
        return default

