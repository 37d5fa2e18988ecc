"""Tagged result types and the typed export error.

Expected outcomes (a missing photo, not enough disk space) travel as values:
callers match on ``Ok`` / ``Err`` instead of catching exceptions.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from pydantic import Field

from .base import BaseExportModel, ExportErrorCode, ExportStage

T = TypeVar("T")


class ExportError(BaseExportModel):
    """Typed error with enough context to retry."""

    code: ExportErrorCode
    message: str
    stage: Optional[ExportStage] = Field(None, description="Stage that produced the error")
    resource: Optional[str] = Field(None, description="File or directory involved")

    @property
    def is_fatal(self) -> bool:
        return self.code.is_fatal

    def at_stage(self, stage: ExportStage) -> "ExportError":
        """Copy of this error attributed to ``stage``."""
        return self.model_copy(update={"stage": stage})

    def __str__(self) -> str:
        location = f" [{self.stage.value}]" if self.stage else ""
        resource = f" ({self.resource})" if self.resource else ""
        return f"{self.code.value}{location}: {self.message}{resource}"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome."""

    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed outcome."""

    error: ExportError

    @property
    def is_ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
