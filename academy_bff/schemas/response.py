"""
Uniform JSON envelope returned by every JSON route of this service.
"""

from typing import Any, Optional
from pydantic import BaseModel


class ResponseAPI(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ResponseAPI":
        return cls(success=True, message=message, data=data)

    @classmethod
    def error(cls, message: str) -> "ResponseAPI":
        return cls(success=False, message=message, data=None)
