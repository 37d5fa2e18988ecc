"""Export Orchestrator - Runs one export from validation to the final manifest.

State machine of a run:

    VALIDATING -> BUDGETING -> PROCESSING -> WRITING -> DONE
         \\            \\            \\           \\
          +------------+------------+-----------+--> FAILED | CANCELLED

Nothing is written before BUDGETING passes. Every file goes through one
OutputTransaction; a failed or cancelled run leaves no output behind.
"""

import errno
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from qreport.models import (
    CheckUpAggregate,
    CompressionPolicy,
    Err,
    ExportError,
    ExportErrorCode,
    ExportFormat,
    ExportManifest,
    ExportOptions,
    ExportStage,
    ExportStatistics,
    ExportWarning,
    ManifestBuilder,
    Ok,
    PhotoQuality,
    Result,
)
from qreport.storage import OutputTransaction, ensure_writable

from .cancellation import CancellationToken, ExportCancelled, checkpoint
from .naming import (
    NamingResolver,
    document_file_name,
    export_directory_name,
    photo_index_file_name,
    text_file_name,
)
from .stage_budget import StorageBudgeter
from .stage_document import AssembledDocument, DocumentAssembler, missing_template_paths
from .stage_folder import PhotoFolderExporter
from .stage_photo import PhotoProcessor
from .stage_text import TextReportRenderer

logger = logging.getLogger(__name__)

StageCallback = Callable[[ExportStage], None]

_NEXT_STAGE = {
    ExportStage.VALIDATING: ExportStage.BUDGETING,
    ExportStage.BUDGETING: ExportStage.PROCESSING,
    ExportStage.PROCESSING: ExportStage.WRITING,
    ExportStage.WRITING: ExportStage.DONE,
}


class InvalidTransition(Exception):
    """Raised when a run attempts a transition the state machine forbids."""


class ExportStateMachine:
    """Linear export lifecycle with FAILED / CANCELLED exits from any live stage."""

    def __init__(self, on_stage: Optional[StageCallback] = None):
        self.stage = ExportStage.VALIDATING
        self.history = [ExportStage.VALIDATING]
        self._on_stage = on_stage
        self._notify()

    def advance(self, target: ExportStage) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransition: ``target`` is not reachable from the current stage.
        """
        allowed = target in (ExportStage.FAILED, ExportStage.CANCELLED) or _NEXT_STAGE.get(self.stage) == target
        if self.stage.is_terminal or not allowed:
            raise InvalidTransition(f"{self.stage.value} -> {target.value}")

        logger.info("Export stage: %s -> %s", self.stage.value, target.value)
        self.stage = target
        self.history.append(target)
        self._notify()

    def _notify(self) -> None:
        if self._on_stage is not None:
            self._on_stage(self.stage)


def _os_error(e: OSError, stage: ExportStage) -> ExportError:
    """Map an OS failure to the export error taxonomy."""
    if isinstance(e, PermissionError):
        code = ExportErrorCode.PERMISSION_DENIED
    elif e.errno == errno.ENOSPC:
        code = ExportErrorCode.INSUFFICIENT_STORAGE
    else:
        code = ExportErrorCode.WRITE_FAILED
    return ExportError(
        code=code,
        message=e.strerror or str(e),
        stage=stage,
        resource=e.filename if isinstance(e.filename, str) else None,
    )


class _RunFailed(Exception):
    """Carries an expected failure out of the run body."""

    def __init__(self, error: ExportError):
        super().__init__(str(error))
        self.error = error


class ExportOrchestrator:
    """Coordinates the stages of an export run.

    Collaborators are injectable; by default they are built from settings.
    """

    def __init__(
        self,
        processor: Optional[PhotoProcessor] = None,
        budgeter: Optional[StorageBudgeter] = None,
        document_assembler: Optional[DocumentAssembler] = None,
        text_renderer: Optional[TextReportRenderer] = None,
        folder_exporter: Optional[PhotoFolderExporter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.processor = processor or PhotoProcessor()
        self.budgeter = budgeter or StorageBudgeter()
        self.document_assembler = document_assembler or DocumentAssembler(self.processor)
        self.text_renderer = text_renderer or TextReportRenderer()
        self.folder_exporter = folder_exporter or PhotoFolderExporter(self.processor)
        self.clock = clock

    def export(
        self,
        aggregate: CheckUpAggregate,
        options: ExportOptions,
        target_dir: Path,
        cancel: Optional[CancellationToken] = None,
        on_stage: Optional[StageCallback] = None,
    ) -> Result[ExportManifest]:
        """Export ``aggregate`` into ``target_dir``.

        Args:
            aggregate: Completed check-up, read-only
            options: Formats and rendering options
            target_dir: Output directory, created when missing
            cancel: Token the caller may cancel from any thread
            on_stage: Called with every stage the run enters

        Returns:
            Ok(ExportManifest), possibly with warnings, or Err(ExportError).
            On Err no file of the run is left on disk.
        """
        target_dir = Path(target_dir)
        generated_at = self.clock()

        if not options.formats:
            logger.info("No export format selected, nothing to do")
            return Ok(ManifestBuilder().build(generated_at=generated_at))

        started = time.monotonic()
        machine = ExportStateMachine(on_stage)
        tx: Optional[OutputTransaction] = None

        try:
            self._validate(aggregate, options, target_dir)
            checkpoint(cancel, "validation")

            machine.advance(ExportStage.BUDGETING)
            estimate = self.budgeter.estimate(aggregate, options)
            budget = self.budgeter.check_available(target_dir, estimate)
            if isinstance(budget, Err):
                raise _RunFailed(budget.error)
            checkpoint(cancel, "budget")

            export_dir = target_dir
            if options.create_timestamped_directory:
                export_dir = target_dir / export_directory_name(generated_at)
            tx = OutputTransaction(export_dir)
            naming = NamingResolver.for_aggregate(aggregate, options.naming_strategy)

            machine.advance(ExportStage.PROCESSING)
            document = self._assemble_document(aggregate, options, naming, cancel, generated_at)
            checkpoint(cancel, "processing")

            machine.advance(ExportStage.WRITING)
            builder = ManifestBuilder(export_directory=str(export_dir))
            seen_warnings: set = set()

            if document is not None:
                path = export_dir / document_file_name(aggregate, generated_at)
                builder.add_file(path, tx.write_bytes(path, document.data), ExportFormat.DOCUMENT)
                for warning in document.warnings:
                    _add_warning(builder, warning, seen_warnings)
                checkpoint(cancel, "document written")

            # The folder goes first so the text report lists only photos it holds
            available_photos = None
            if options.exports_photo_folder():
                folder = self._export_folder(aggregate, options, export_dir, naming, tx, cancel, generated_at)
                available_photos = {photo.file_name for photo in folder.photos}
                builder.merge(folder, warnings=False)
                for warning in folder.warnings:
                    _add_warning(builder, warning, seen_warnings)

            if options.is_format_enabled(ExportFormat.TEXT):
                text = self.text_renderer.render(aggregate, options, naming, generated_at, available_photos)
                path = export_dir / text_file_name(generated_at)
                builder.add_file(path, tx.write_text(path, text), ExportFormat.TEXT)
                checkpoint(cancel, "text written")

            checkpoint(cancel, "writing")
            tx.commit()
            machine.advance(ExportStage.DONE)

        except _RunFailed as failure:
            return self._fail(machine, tx, failure.error)
        except ExportCancelled as e:
            return self._cancel(machine, tx, e)
        except OSError as e:
            logger.exception("Export failed during %s", machine.stage.value)
            return self._fail(machine, tx, _os_error(e, machine.stage))
        except BaseException:
            if tx is not None:
                tx.rollback()
            raise

        statistics = ExportStatistics(
            sections_processed=len(aggregate.sections),
            items_processed=len(aggregate.all_items()),
            photos_processed=(document.photos_embedded + document.placeholders) if document else 0,
            photos_exported=len(available_photos or ()),
            spare_parts_included=len(aggregate.spare_parts)
            if document or options.is_format_enabled(ExportFormat.TEXT)
            else 0,
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        manifest = builder.build(generated_at=generated_at, statistics=statistics)
        logger.info(
            "Export completed: %d files, %d warnings, %s",
            len(manifest.files),
            len(manifest.warnings),
            statistics.processing_time_formatted,
        )
        return Ok(manifest)

    def _validate(self, aggregate: CheckUpAggregate, options: ExportOptions, target_dir: Path) -> None:
        problems = options.validate_options()
        if problems:
            raise _RunFailed(
                ExportError(
                    code=ExportErrorCode.INVALID_OPTIONS,
                    message="; ".join(problems),
                    stage=ExportStage.VALIDATING,
                )
            )

        if options.is_format_enabled(ExportFormat.DOCUMENT):
            missing = missing_template_paths(options.custom_template)
            if missing:
                raise _RunFailed(
                    ExportError(
                        code=ExportErrorCode.TEMPLATE_NOT_FOUND,
                        message=f"Template file not found: {missing[0]}",
                        stage=ExportStage.VALIDATING,
                        resource=missing[0],
                    )
                )

        ensure_writable(target_dir)
        logger.debug("Validated export of check-up %s into %s", aggregate.id, target_dir)

    def _assemble_document(
        self,
        aggregate: CheckUpAggregate,
        options: ExportOptions,
        naming: NamingResolver,
        cancel: Optional[CancellationToken],
        generated_at: datetime,
    ) -> Optional[AssembledDocument]:
        if not options.is_format_enabled(ExportFormat.DOCUMENT):
            return None
        result = self.document_assembler.assemble(aggregate, options, naming, cancel, generated_at)
        if isinstance(result, Err):
            raise _RunFailed(result.error)
        return result.value

    def _export_folder(
        self,
        aggregate: CheckUpAggregate,
        options: ExportOptions,
        export_dir: Path,
        naming: NamingResolver,
        tx: OutputTransaction,
        cancel: Optional[CancellationToken],
        generated_at: datetime,
    ) -> ExportManifest:
        policy = None
        if options.photo_folder_quality != PhotoQuality.ORIGINAL:
            policy = CompressionPolicy.for_quality(options.photo_folder_quality)
        index_name = photo_index_file_name(generated_at) if options.generate_photo_index else None
        return self.folder_exporter.export_folder(
            aggregate,
            export_dir,
            naming,
            policy,
            transaction=tx,
            cancel=cancel,
            index_name=index_name,
            generated_at=generated_at,
        )

    def _fail(
        self,
        machine: ExportStateMachine,
        tx: Optional[OutputTransaction],
        error: ExportError,
    ) -> Err:
        if error.stage is None:
            error = error.at_stage(machine.stage)
        logger.error("Export failed: %s", error)
        if tx is not None:
            tx.rollback()
        machine.advance(ExportStage.FAILED)
        return Err(error)

    def _cancel(
        self,
        machine: ExportStateMachine,
        tx: Optional[OutputTransaction],
        cancelled: ExportCancelled,
    ) -> Err:
        logger.info("Export cancelled during %s", machine.stage.value)
        if tx is not None:
            tx.rollback()
        machine.advance(ExportStage.CANCELLED)
        return Err(
            ExportError(
                code=ExportErrorCode.EXPORT_CANCELLED,
                message=str(cancelled),
                stage=ExportStage.CANCELLED,
            )
        )


def _add_warning(builder: ManifestBuilder, warning: ExportWarning, seen: set) -> None:
    """Report each (code, resource) pair once even when several outputs hit it."""
    key = (warning.code, warning.resource)
    if key in seen:
        return
    seen.add(key)
    builder.add_warning(warning)
