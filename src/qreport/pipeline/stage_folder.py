"""Photo Folder Stage - Copy check-up photos into FOTO/ under resolved names.

Originals are copied byte for byte; with a reduced folder quality the photos
are re-encoded by the photo processor first. A photo that cannot be read is
reported as a warning and skipped.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from qreport.models import (
    CheckUpAggregate,
    CompressionPolicy,
    Err,
    ExportedPhoto,
    ExportError,
    ExportErrorCode,
    ExportFormat,
    ExportManifest,
    ExportStage,
    ExportWarning,
    ManifestBuilder,
    PhotoSlot,
)
from qreport.storage import OutputTransaction

from .cancellation import CancellationToken, checkpoint
from .naming import PHOTO_FOLDER_NAME, NamingResolver
from .stage_photo import PhotoProcessor, iter_processed

logger = logging.getLogger(__name__)


def render_photo_index(
    aggregate: CheckUpAggregate,
    photos: list[ExportedPhoto],
    generated_at: datetime,
) -> str:
    """Plain-text index mapping every exported file to its check item."""
    items = {
        (section_index, item_index): (section.title, item)
        for section_index, section in enumerate(aggregate.sections)
        for item_index, item in enumerate(section.items)
    }

    lines = [
        "INDICE FOTO",
        "=" * 80,
        f"Cliente: {aggregate.header.client.company_name}",
        f"Isola:   {aggregate.header.island.island_type}",
        f"Data:    {generated_at:%d/%m/%Y %H:%M}",
        f"Foto:    {len(photos)}",
        "=" * 80,
        "",
    ]
    for number, photo in enumerate(photos, start=1):
        section_title, item = items[(photo.section_index, photo.item_index)]
        lines.append(f"{number}. {photo.file_name}")
        lines.append(f"   Sezione:   {section_title}")
        lines.append(f"   Controllo: {item.title}")
        lines.append(f"   Stato:     {item.status.display_name}")
        lines.append(f"   Criticità: {item.criticality.display_name}")
        lines.append("")
    return "\n".join(lines) + "\n"


class PhotoFolderExporter:
    """Writes the photo folder of an export run."""

    def __init__(self, processor: Optional[PhotoProcessor] = None, max_workers: int = None):
        self.processor = processor or PhotoProcessor()
        self.max_workers = max_workers

    def export_folder(
        self,
        aggregate: CheckUpAggregate,
        target_dir: Path,
        naming: NamingResolver,
        policy: Optional[CompressionPolicy] = None,
        *,
        transaction: Optional[OutputTransaction] = None,
        cancel: Optional[CancellationToken] = None,
        index_name: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ) -> ExportManifest:
        """Export every photo of ``aggregate`` into ``target_dir/FOTO``.

        Args:
            aggregate: Check-up whose photos are exported
            target_dir: Directory receiving the FOTO folder
            naming: Resolver shared with the other generators of the run
            policy: Re-encoding policy; None copies the originals
            transaction: Transaction of the surrounding run; when None the
                folder is written and committed on its own
            cancel: Token checked between photos
            index_name: When set, a photo index with this name is written
                beside the FOTO folder
            generated_at: Timestamp of the photo index

        Returns:
            Manifest with one entry per written file and one warning per
            skipped photo.
        """
        target_dir = Path(target_dir)
        owns_transaction = transaction is None
        tx = transaction or OutputTransaction(target_dir)
        folder = target_dir / PHOTO_FOLDER_NAME
        builder = ManifestBuilder(export_directory=str(target_dir))

        try:
            tx.ensure_directory(folder)
            if policy is None:
                self._copy_originals(aggregate, folder, naming, tx, builder, cancel)
            else:
                self._write_processed(aggregate, folder, naming, policy, tx, builder, cancel)

            manifest = builder.build()
            if index_name and manifest.photos:
                text = render_photo_index(aggregate, manifest.photos, generated_at or datetime.now())
                index_path = target_dir / index_name
                size = tx.write_text(index_path, text)
                builder.add_file(index_path, size, ExportFormat.PHOTO_FOLDER)
        except BaseException:
            if owns_transaction:
                tx.rollback()
            raise

        if owns_transaction:
            tx.commit()

        manifest = builder.build()
        logger.info(
            "Photo folder written: %d photos, %d warnings",
            len(manifest.photos),
            len(manifest.warnings),
        )
        return manifest

    def _copy_originals(
        self,
        aggregate: CheckUpAggregate,
        folder: Path,
        naming: NamingResolver,
        tx: OutputTransaction,
        builder: ManifestBuilder,
        cancel: Optional[CancellationToken],
    ) -> None:
        for slot in aggregate.iter_photo_slots():
            checkpoint(cancel, "photo folder")
            source = slot.photo.path
            if not source.is_file() or not os.access(source, os.R_OK):
                self._skip(builder, slot, ExportErrorCode.PHOTO_NOT_FOUND, "Photo file not found")
                continue

            name = naming.resolve_slot(slot)
            try:
                size = tx.copy_file(source, folder / name)
            except FileNotFoundError:
                self._skip(builder, slot, ExportErrorCode.PHOTO_NOT_FOUND, "Photo file disappeared during export")
                continue

            builder.add_photo(self._exported(slot, folder / name, size))
            logger.debug("Copied %s -> %s", source.name, name)

    def _write_processed(
        self,
        aggregate: CheckUpAggregate,
        folder: Path,
        naming: NamingResolver,
        policy: CompressionPolicy,
        tx: OutputTransaction,
        builder: ManifestBuilder,
        cancel: Optional[CancellationToken],
    ) -> None:
        slots = list(aggregate.iter_photo_slots())
        results = iter_processed(
            self.processor,
            (slot.photo for slot in slots),
            policy,
            max_workers=self.max_workers,
            cancel=cancel,
        )
        for slot, (_, result) in zip(slots, results):
            if isinstance(result, Err):
                builder.add_warning(ExportWarning.from_error(result.error, ExportStage.WRITING))
                logger.warning("Skipping photo %s: %s", slot.photo.file_path, result.error.message)
                continue

            name = naming.resolve_slot(slot)
            size = tx.write_bytes(folder / name, result.value.data)
            builder.add_photo(self._exported(slot, folder / name, size))
            logger.debug("Wrote re-encoded %s -> %s", slot.photo.path.name, name)

    @staticmethod
    def _exported(slot: PhotoSlot, path: Path, size: int) -> ExportedPhoto:
        return ExportedPhoto(
            file_name=path.name,
            path=str(path),
            size_bytes=size,
            source_path=slot.photo.file_path,
            section_index=slot.section_index,
            item_index=slot.item_index,
            item_id=slot.item.id,
        )

    @staticmethod
    def _skip(builder: ManifestBuilder, slot: PhotoSlot, code: ExportErrorCode, message: str) -> None:
        logger.warning("Skipping photo %s: %s", slot.photo.file_path, message)
        error = ExportError(
            code=code,
            message=message,
            stage=ExportStage.WRITING,
            resource=slot.photo.file_path,
        )
        builder.add_warning(ExportWarning.from_error(error))
