"""Storage Budget Stage - Pre-flight disk space check.

The estimate is deliberately pessimistic; the check only gates the run and
does not reserve space.
"""

import logging
import math
from pathlib import Path
from typing import Callable, Optional

from qreport.config import settings
from qreport.models import (
    CheckUpAggregate,
    Err,
    ExportError,
    ExportErrorCode,
    ExportFormat,
    ExportOptions,
    ExportStage,
    Ok,
    PhotoRef,
    Result,
    format_file_size,
)
from qreport.storage import file_size, free_space

logger = logging.getLogger(__name__)


def bytes_per_pixel(quality: int) -> float:
    """Typical JPEG density for photos of industrial equipment."""
    if quality >= 90:
        return 0.5
    if quality >= 75:
        return 0.3
    if quality >= 50:
        return 0.2
    return 0.12


class StorageBudgeter:
    """Estimates output size and checks it against free space."""

    def __init__(
        self,
        safety_factor: float = None,
        base_overhead_bytes: int = None,
        row_overhead_bytes: int = None,
        fallback_photo_bytes: int = None,
        free_space_fn: Callable[[Path], int] = free_space,
    ):
        """Initialize budgeter.

        Args:
            safety_factor: Required free space over the estimate, at least 2
                (default from settings)
            base_overhead_bytes: Fixed document overhead (default from settings)
            row_overhead_bytes: Cost of one table row (default from settings)
            fallback_photo_bytes: Assumed size of a photo whose size is unknown
            free_space_fn: Returns free bytes for a directory
        """
        self.safety_factor = max(2.0, safety_factor or settings.storage_safety_factor)
        self.base_overhead_bytes = base_overhead_bytes or settings.base_document_overhead_bytes
        self.row_overhead_bytes = row_overhead_bytes or settings.table_row_overhead_bytes
        self.fallback_photo_bytes = fallback_photo_bytes or settings.fallback_photo_size_bytes
        self.free_space_fn = free_space_fn

    def estimate(self, aggregate: CheckUpAggregate, options: ExportOptions) -> int:
        """Upper-bound estimate in bytes of everything the run will write.

        Args:
            aggregate: Check-up to export
            options: Export options

        Returns:
            Estimated bytes; 0 when no format is selected.
        """
        if not options.formats:
            return 0

        total = self.base_overhead_bytes

        if options.is_format_enabled(ExportFormat.DOCUMENT) and options.include_photos:
            compression = options.compression
            total += sum(
                self._processed_photo_bytes(slot.photo, compression.max_width, compression.quality)
                for slot in aggregate.iter_photo_slots()
            )

        if options.exports_photo_folder():
            total += sum(self._original_photo_bytes(slot.photo) for slot in aggregate.iter_photo_slots())

        if options.is_format_enabled(ExportFormat.DOCUMENT) or options.is_format_enabled(ExportFormat.TEXT):
            rows = len(aggregate.sections) + len(aggregate.all_items()) + len(aggregate.spare_parts)
            total += rows * self.row_overhead_bytes

        return total

    def check_available(self, target_dir: Path, estimate: int) -> Result[int]:
        """Check that the target volume holds ``estimate`` times the safety factor.

        Args:
            target_dir: Export directory, possibly not yet created
            estimate: Output of ``estimate``

        Returns:
            Ok(free bytes) or Err(INSUFFICIENT_STORAGE)
        """
        available = self.free_space_fn(Path(target_dir))
        required = math.ceil(estimate * self.safety_factor)

        if available < required:
            logger.warning(
                "Insufficient storage: %s required, %s available",
                format_file_size(required),
                format_file_size(available),
            )
            return Err(
                ExportError(
                    code=ExportErrorCode.INSUFFICIENT_STORAGE,
                    message=(
                        f"Need {format_file_size(required)} free, "
                        f"only {format_file_size(available)} available"
                    ),
                    stage=ExportStage.BUDGETING,
                    resource=str(target_dir),
                )
            )

        logger.debug("Storage check passed: %d required, %d available", required, available)
        return Ok(available)

    def _processed_photo_bytes(self, photo: PhotoRef, max_width: int, quality: int) -> int:
        width = min(max_width, photo.width) if photo.width else max_width
        return int(width * (width * 0.75) * bytes_per_pixel(quality))

    def _original_photo_bytes(self, photo: PhotoRef) -> int:
        if photo.file_size_bytes is not None:
            return photo.file_size_bytes
        size: Optional[int] = file_size(photo.file_path)
        return size if size is not None else self.fallback_photo_bytes
