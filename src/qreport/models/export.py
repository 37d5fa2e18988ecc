"""Export output models: processed photos, exported files and the manifest."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import Field

from .base import BaseExportModel, ExportErrorCode, ExportFormat, ExportStage
from .result import ExportError


class ProcessedPhoto(BaseExportModel):
    """
    Re-encoded photo ready to be embedded.

    Ephemeral: owned by the document assembler and dropped right after the
    image is added to the document.
    """

    data: bytes = Field(..., repr=False)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def aspect_ratio(self) -> float:
        """Height over width."""
        return self.height / self.width


class ExportedPhoto(BaseExportModel):
    """Photo written to the photo folder. Immutable once written."""

    file_name: str
    path: str
    size_bytes: int = Field(..., ge=0)
    source_path: str
    section_index: int = Field(..., ge=0)
    item_index: int = Field(..., ge=0)
    item_id: str


class ManifestEntry(BaseExportModel):
    """One file produced by an export run."""

    path: str
    size_bytes: int = Field(..., ge=0)
    format: ExportFormat

    @property
    def file_name(self) -> str:
        return Path(self.path).name


class ExportWarning(BaseExportModel):
    """Recovered, non-fatal problem surfaced to the caller."""

    code: ExportErrorCode
    message: str
    stage: Optional[ExportStage] = None
    resource: Optional[str] = None

    @classmethod
    def from_error(cls, error: ExportError, stage: Optional[ExportStage] = None) -> "ExportWarning":
        return cls(
            code=error.code,
            message=error.message,
            stage=stage or error.stage,
            resource=error.resource,
        )


class ExportStatistics(BaseExportModel):
    """Counters collected during one export run."""

    sections_processed: int = 0
    items_processed: int = 0
    photos_processed: int = 0
    photos_exported: int = 0
    spare_parts_included: int = 0
    processing_time_ms: int = 0

    @property
    def processing_time_formatted(self) -> str:
        seconds = self.processing_time_ms / 1000.0
        if seconds < 60:
            return f"{seconds:.1f}s"
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"


class ExportManifest(BaseExportModel):
    """
    Summary of everything one export run produced.

    A successful run always yields a manifest, even with warnings.
    """

    files: list[ManifestEntry] = Field(default_factory=list)
    photos: list[ExportedPhoto] = Field(default_factory=list)
    warnings: list[ExportWarning] = Field(default_factory=list)
    export_directory: Optional[str] = None
    generated_at: datetime = Field(default_factory=datetime.now)
    statistics: ExportStatistics = Field(default_factory=ExportStatistics)

    @property
    def total_size_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.files)

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.warnings

    def files_for(self, export_format: ExportFormat) -> list[ManifestEntry]:
        return [entry for entry in self.files if entry.format == export_format]


class ManifestBuilder:
    """Accumulates manifest content; the manifest itself is immutable."""

    def __init__(self, export_directory: Optional[str] = None):
        self.export_directory = export_directory
        self._files: list[ManifestEntry] = []
        self._photos: list[ExportedPhoto] = []
        self._warnings: list[ExportWarning] = []

    def add_file(self, path: Path, size_bytes: int, export_format: ExportFormat) -> "ManifestBuilder":
        self._files.append(
            ManifestEntry(path=str(path), size_bytes=size_bytes, format=export_format)
        )
        return self

    def add_photo(self, photo: ExportedPhoto) -> "ManifestBuilder":
        self._photos.append(photo)
        return self.add_file(Path(photo.path), photo.size_bytes, ExportFormat.PHOTO_FOLDER)

    def add_warning(self, warning: ExportWarning) -> "ManifestBuilder":
        self._warnings.append(warning)
        return self

    def merge(self, manifest: ExportManifest, warnings: bool = True) -> "ManifestBuilder":
        """Take over files, photos and (optionally) warnings of a partial manifest."""
        self._files.extend(manifest.files)
        self._photos.extend(manifest.photos)
        if warnings:
            self._warnings.extend(manifest.warnings)
        return self

    @property
    def warnings(self) -> list[ExportWarning]:
        return list(self._warnings)

    def build(
        self,
        generated_at: Optional[datetime] = None,
        statistics: Optional[ExportStatistics] = None,
    ) -> ExportManifest:
        return ExportManifest(
            files=list(self._files),
            photos=list(self._photos),
            warnings=list(self._warnings),
            export_directory=self.export_directory,
            generated_at=generated_at or datetime.now(),
            statistics=statistics or ExportStatistics(),
        )


def format_file_size(size_bytes: int) -> str:
    """Human readable size, e.g. '1.5MB'."""
    if size_bytes < 1024:
        return f"{size_bytes}B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f}KB"
    if size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f}MB"
    return f"{size_bytes / (1024 * 1024 * 1024):.1f}GB"
