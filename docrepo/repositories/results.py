"""
Operation results returned by repositories.

Every public repository operation returns an ``OperationResult``: callers
branch on ``success`` instead of catching exceptions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

from ..services.errors import classify_error

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Tagged success/failure result carrying data or an error message."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Optional[T] = None, **metadata: Any) -> "OperationResult[T]":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> "OperationResult[T]":
        return cls(success=False, error=error, metadata=metadata)

    @classmethod
    def from_exception(
        cls, error: BaseException, context: Optional[str] = None
    ) -> "OperationResult[T]":
        """Failure result carrying the original error message and its classification."""
        details = classify_error(error)
        metadata = details.as_metadata()
        if context:
            metadata["context"] = context
        return cls(success=False, error=details.message, metadata=metadata)

    def unwrap(self) -> T:
        """Return the data of a successful result, raise RuntimeError otherwise."""
        if not self.success:
            raise RuntimeError(self.error or "operation failed")
        return self.data


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a cursor-paginated listing."""

    items: List[T]
    page_size: int
    next_cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None
