"""
Per-stage results threaded through multi-stage pipelines.
A stage either succeeds, degrades (partial output) or fails (no output).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class StageStatus(Enum):
    """Outcome of a single pipeline stage."""
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class StageResult(Generic[T]):
    """Value produced by a stage together with its outcome."""

    stage: str
    status: StageStatus
    value: List[T] = field(default_factory=list)
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, stage: str, value: List[T]) -> "StageResult[T]":
        return cls(stage=stage, status=StageStatus.OK, value=value)

    @classmethod
    def degraded(
        cls, stage: str, value: List[T], error: Optional[BaseException] = None
    ) -> "StageResult[T]":
        return cls(stage=stage, status=StageStatus.DEGRADED, value=value, error=error)

    @classmethod
    def failed(cls, stage: str, error: BaseException) -> "StageResult[T]":
        return cls(stage=stage, status=StageStatus.FAILED, error=error)

    @property
    def usable(self) -> bool:
        """True when the stage produced output that may be merged."""
        return self.status is not StageStatus.FAILED
