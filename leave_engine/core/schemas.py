from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field
from datetime import datetime, timezone

T = TypeVar("T")


class ErrorItem(BaseModel):
    msg: str
    code: Optional[str] = None
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ApiResponse(BaseModel, Generic[T]):
    """Envelope shared by admin job results and every error response."""
    success: bool
    data: Optional[T] = None
    errors: List[ErrorItem] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def ok(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> "ApiResponse[T]":
        return cls(success=True, data=data, metadata=metadata or {})

    @classmethod
    def fail(cls, errors: List[ErrorItem]) -> "ApiResponse[T]":
        return cls(success=False, errors=errors)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
