"""Export configuration models."""

from typing import Optional

from pydantic import Field

from qreport.config import settings

from .base import BaseExportModel, ExportFormat, NamingStrategy, PhotoQuality


class CompressionPolicy(BaseExportModel):
    """How photos are re-encoded before being embedded."""

    quality: int = Field(
        default_factory=lambda: settings.photo_quality, ge=1, le=100, description="JPEG quality (1-100)"
    )
    max_width: int = Field(
        default_factory=lambda: settings.photo_max_width, gt=0, description="Maximum output width in pixels"
    )
    watermark: bool = Field(default=False, description="Stamp watermark text bottom-right")
    watermark_text: str = Field(default="QReport")
    watermark_timestamp: bool = Field(
        default=False, description="Append the capture timestamp to the watermark"
    )

    @classmethod
    def for_quality(cls, quality: PhotoQuality, max_width: int = 1920) -> "CompressionPolicy":
        """Policy used when the photo folder is not written at original quality."""
        return cls(quality=quality.jpeg_quality, max_width=max_width)


class ReportTemplate(BaseExportModel):
    """Visual customization of the generated document."""

    name: str = "QReport Standard"
    header_color: str = Field(default="1F4E79", pattern=r"^[0-9A-Fa-f]{6}$")
    font_family: str = "Calibri"
    base_font_size: int = Field(default=11, ge=6, le=24)
    footer_text: str = "Report generato da QReport"
    logo_path: Optional[str] = Field(None, description="Logo placed above the title")
    base_document_path: Optional[str] = Field(
        None, description="Existing .docx whose styles and content are kept"
    )

    def referenced_paths(self) -> list[str]:
        """Files that must exist for this template to be usable."""
        return [path for path in (self.base_document_path, self.logo_path) if path]


ALL_FORMATS = frozenset(ExportFormat)


class ExportOptions(BaseExportModel):
    """Options supplied by the caller for one export run."""

    formats: frozenset[ExportFormat] = Field(default=ALL_FORMATS)
    include_photos: bool = True
    include_notes: bool = True
    compression: CompressionPolicy = Field(default_factory=CompressionPolicy)
    naming_strategy: NamingStrategy = NamingStrategy.STRUCTURED
    custom_template: Optional[ReportTemplate] = None

    photos_per_row: int = Field(
        default_factory=lambda: settings.photos_per_row, description="Photo grid columns in the document"
    )
    photo_folder_quality: PhotoQuality = PhotoQuality.ORIGINAL
    generate_photo_index: bool = False
    create_timestamped_directory: bool = False

    @classmethod
    def complete(cls) -> "ExportOptions":
        """Document, text report and photo folder."""
        return cls()

    @classmethod
    def document_only(cls) -> "ExportOptions":
        return cls(formats=frozenset({ExportFormat.DOCUMENT}))

    @classmethod
    def text_only(cls) -> "ExportOptions":
        """Document and text report without photos."""
        return cls(
            formats=frozenset({ExportFormat.DOCUMENT, ExportFormat.TEXT}),
            include_photos=False,
        )

    @classmethod
    def photo_archive(cls) -> "ExportOptions":
        """Original photos plus index, no documents."""
        return cls(
            formats=frozenset({ExportFormat.PHOTO_FOLDER}),
            photo_folder_quality=PhotoQuality.ORIGINAL,
            generate_photo_index=True,
        )

    def validate_options(self) -> list[str]:
        """Return human readable problems; empty when the options are usable.

        An empty format set is not a problem: the run is a no-op.
        """
        errors = []
        if not 1 <= self.photos_per_row <= 4:
            errors.append(f"photos_per_row must be between 1 and 4, got {self.photos_per_row}")
        if self.compression.watermark and not self.compression.watermark_text.strip():
            errors.append("watermark_text is required when watermark is enabled")
        if self.generate_photo_index and ExportFormat.PHOTO_FOLDER not in self.formats:
            errors.append("generate_photo_index requires the photo_folder format")
        return errors

    def is_format_enabled(self, export_format: ExportFormat) -> bool:
        return export_format in self.formats

    def exports_photo_folder(self) -> bool:
        """True when FOTO/ is written: the format is selected and photos are included."""
        return self.include_photos and self.is_format_enabled(ExportFormat.PHOTO_FOLDER)

    def requires_photos(self) -> bool:
        """True when some output needs the photo files."""
        return self.include_photos and (
            self.is_format_enabled(ExportFormat.DOCUMENT) or self.is_format_enabled(ExportFormat.PHOTO_FOLDER)
        )
