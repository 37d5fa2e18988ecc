"""Base models and common types for the QReport export engine."""

from enum import Enum

from pydantic import BaseModel


class CheckItemStatus(str, Enum):
    """Outcome recorded by the technician for a single check item."""

    OK = "ok"
    NOK = "nok"
    CRITICAL = "critical"
    PENDING = "pending"
    NA = "na"

    @property
    def display_name(self) -> str:
        return _STATUS_DISPLAY[self]


_STATUS_DISPLAY = {
    CheckItemStatus.OK: "OK",
    CheckItemStatus.NOK: "NOK",
    CheckItemStatus.CRITICAL: "Critico",
    CheckItemStatus.PENDING: "In attesa",
    CheckItemStatus.NA: "N/A",
}


class CriticalityLevel(str, Enum):
    """How important a check item is for the island to keep running."""

    CRITICAL = "critical"
    IMPORTANT = "important"
    ROUTINE = "routine"
    NA = "na"

    @property
    def display_name(self) -> str:
        return _CRITICALITY_DISPLAY[self]


_CRITICALITY_DISPLAY = {
    CriticalityLevel.CRITICAL: "Critica",
    CriticalityLevel.IMPORTANT: "Importante",
    CriticalityLevel.ROUTINE: "Routine",
    CriticalityLevel.NA: "N/A",
}


class SparePartUrgency(str, Enum):
    """Replacement urgency of a spare part."""

    CRITICAL = "critical"  # Replace immediately
    IMPORTANT = "important"  # Replace within 30 days
    ROUTINE = "routine"  # Replace at next maintenance

    @property
    def display_name(self) -> str:
        return _URGENCY_DISPLAY[self]


_URGENCY_DISPLAY = {
    SparePartUrgency.CRITICAL: "Critica",
    SparePartUrgency.IMPORTANT: "Importante",
    SparePartUrgency.ROUTINE: "Routine",
}


class ExportFormat(str, Enum):
    """Output artifacts the engine can produce."""

    DOCUMENT = "document"
    TEXT = "text"
    PHOTO_FOLDER = "photo_folder"


class NamingStrategy(str, Enum):
    """How exported photo files are named."""

    STRUCTURED = "structured"  # 01_sezione_controllo_didascalia.jpg
    SEQUENTIAL = "sequential"  # foto_001.jpg
    TIMESTAMP = "timestamp"  # 20251022_143052_001.jpg


class PhotoQuality(str, Enum):
    """Quality of the files written to the photo folder."""

    ORIGINAL = "original"
    OPTIMIZED = "optimized"
    COMPRESSED = "compressed"

    @property
    def jpeg_quality(self) -> int:
        return {"original": 100, "optimized": 85, "compressed": 70}[self.value]


class ExportStage(str, Enum):
    """States of a single export run."""

    VALIDATING = "validating"
    BUDGETING = "budgeting"
    PROCESSING = "processing"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportStage.DONE, ExportStage.FAILED, ExportStage.CANCELLED)


class ExportErrorCode(str, Enum):
    """Error taxonomy of the export engine."""

    INSUFFICIENT_STORAGE = "insufficient_storage"
    PERMISSION_DENIED = "permission_denied"
    TEMPLATE_NOT_FOUND = "template_not_found"
    PHOTO_NOT_FOUND = "photo_not_found"
    IMAGE_DECODE_FAILED = "image_decode_failed"
    DOCUMENT_GENERATION_ERROR = "document_generation_error"
    INVALID_OPTIONS = "invalid_options"
    WRITE_FAILED = "write_failed"
    EXPORT_CANCELLED = "export_cancelled"

    @property
    def is_fatal(self) -> bool:
        """Per-photo failures are recovered locally; everything else aborts."""
        return self not in (ExportErrorCode.PHOTO_NOT_FOUND, ExportErrorCode.IMAGE_DECODE_FAILED)


class BaseExportModel(BaseModel):
    """Base class for all immutable export records."""

    class Config:
        frozen = True
        from_attributes = True

