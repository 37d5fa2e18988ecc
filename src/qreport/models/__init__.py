"""Data models for the QReport export engine.

This module defines the pydantic models flowing through the export stages.
All models are frozen: a changed copy is made with ``model_copy(update=...)``.

Key Design Principles:
1. Read-only input: the check-up aggregate is never mutated
2. Values over exceptions: expected failures are ``Err`` results
3. One run, one lifecycle: derived records never outlive an export

Model Hierarchy:
- CheckUpAggregate → Sections → CheckItems → PhotoRefs
- CheckUpAggregate → SpareParts
- ExportManifest → ManifestEntries / ExportedPhotos / ExportWarnings
"""

from .base import (
    BaseExportModel,
    CheckItemStatus,
    CriticalityLevel,
    ExportErrorCode,
    ExportFormat,
    ExportStage,
    NamingStrategy,
    PhotoQuality,
    SparePartUrgency,
)
from .checkup import (
    CheckItem,
    CheckUpAggregate,
    CheckUpHeader,
    ClientInfo,
    IslandInfo,
    PhotoRef,
    PhotoSlot,
    Section,
    SparePart,
    TechnicianInfo,
)
from .export import (
    ExportedPhoto,
    ExportManifest,
    ExportStatistics,
    ExportWarning,
    ManifestBuilder,
    ManifestEntry,
    ProcessedPhoto,
    format_file_size,
)
from .options import (
    CompressionPolicy,
    ExportOptions,
    ReportTemplate,
)
from .result import (
    Err,
    ExportError,
    Ok,
    Result,
)
from .statistics import (
    CheckUpStatistics,
    SectionStatistics,
)

__all__ = [
    # Base types
    "BaseExportModel",
    "CheckItemStatus",
    "CriticalityLevel",
    "ExportErrorCode",
    "ExportFormat",
    "ExportStage",
    "NamingStrategy",
    "PhotoQuality",
    "SparePartUrgency",
    # Check-up aggregate
    "CheckItem",
    "CheckUpAggregate",
    "CheckUpHeader",
    "ClientInfo",
    "IslandInfo",
    "PhotoRef",
    "PhotoSlot",
    "Section",
    "SparePart",
    "TechnicianInfo",
    # Options
    "CompressionPolicy",
    "ExportOptions",
    "ReportTemplate",
    # Results
    "Err",
    "ExportError",
    "Ok",
    "Result",
    # Export outputs
    "ExportedPhoto",
    "ExportManifest",
    "ExportStatistics",
    "ExportWarning",
    "ManifestBuilder",
    "ManifestEntry",
    "ProcessedPhoto",
    "format_file_size",
    # Statistics
    "CheckUpStatistics",
    "SectionStatistics",
]
