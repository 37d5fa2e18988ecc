"""Tests for the export orchestrator."""

import errno
import io
from unittest.mock import MagicMock, patch

import pytest
from docx import Document

from qreport.models import (
    CompressionPolicy,
    Err,
    ExportErrorCode,
    ExportFormat,
    ExportOptions,
    ExportStage,
    Ok,
    ReportTemplate,
)
from qreport.pipeline.cancellation import CancellationToken
from qreport.pipeline.orchestrator import ExportOrchestrator, ExportStateMachine, InvalidTransition
from qreport.pipeline.stage_budget import StorageBudgeter
from qreport.pipeline.stage_photo import PhotoProcessor
from qreport.storage import OutputTransaction

from conftest import GENERATED_AT

DOCUMENT_NAME = "Checkup_POLY-Move_Acme-Robotica-S-r-l_20251022_1430.docx"
TEXT_NAME = "Checkup_Summary_20251022_1430.txt"


def make_orchestrator(free_bytes: int = 10**12) -> ExportOrchestrator:
    return ExportOrchestrator(
        budgeter=StorageBudgeter(free_space_fn=MagicMock(return_value=free_bytes)),
        clock=lambda: GENERATED_AT,
    )


@pytest.fixture
def orchestrator():
    return make_orchestrator()


def text_photo_names(text: str) -> list[str]:
    names = []
    for line in text.splitlines():
        entry = line.strip()
        if entry.endswith(".jpg") and ":" not in entry:
            names.append(entry[2:] if entry.startswith("- ") else entry)
    return names


def document_photo_names(data: bytes) -> list[str]:
    document = Document(io.BytesIO(data))
    names = []
    for table in document.tables:
        for row in table.rows:
            for cell in row.cells:
                last = cell.paragraphs[-1].text
                if last.endswith(".jpg"):
                    names.append(last)
    return names


class TestSuccessfulExport:
    """Tests for complete export runs."""

    def test_all_formats(self, orchestrator, aggregate, output_dir):
        """Document, text and photo folder are written and listed."""
        result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        assert isinstance(result, Ok)
        manifest = result.value
        assert sorted(p.name for p in output_dir.iterdir()) == sorted([DOCUMENT_NAME, TEXT_NAME, "FOTO"])
        assert [e.file_name for e in manifest.files_for(ExportFormat.DOCUMENT)] == [DOCUMENT_NAME]
        assert [e.file_name for e in manifest.files_for(ExportFormat.TEXT)] == [TEXT_NAME]
        assert len(manifest.files_for(ExportFormat.PHOTO_FOLDER)) == 3
        assert manifest.warnings == []
        assert manifest.export_directory == str(output_dir)
        assert manifest.generated_at == GENERATED_AT
        assert manifest.total_size_bytes == sum(
            p.stat().st_size for p in output_dir.rglob("*") if p.is_file()
        )

    def test_names_match_across_formats(self, orchestrator, aggregate, output_dir):
        """Folder files, text references and document captions use the same names."""
        orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        folder_names = sorted(p.name for p in (output_dir / "FOTO").iterdir())
        text_names = sorted(text_photo_names((output_dir / TEXT_NAME).read_text(encoding="utf-8")))
        document_names = sorted(document_photo_names((output_dir / DOCUMENT_NAME).read_bytes()))

        assert folder_names == text_names == document_names
        assert len(folder_names) == 3

    def test_names_match_with_missing_photo(self, orchestrator, aggregate_with_missing_photo, output_dir):
        """A photo skipped by the folder is counted in the text but not listed."""
        orchestrator.export(aggregate_with_missing_photo, ExportOptions.complete(), output_dir)

        folder_names = sorted(p.name for p in (output_dir / "FOTO").iterdir())
        text = (output_dir / TEXT_NAME).read_text(encoding="utf-8")

        assert sorted(text_photo_names(text)) == folder_names
        assert folder_names == [
            "01_sicurezza_pulsante-emergenza_pannello-frontale.jpg",
            "02_meccanica_controllo-cinghia_usura-lato-destro.jpg",
        ]
        assert "Foto: 2 foto acquisite, 1 non disponibile" in text

    def test_without_photos_no_folder_and_no_references(self, orchestrator, aggregate, output_dir):
        """include_photos=False applies to every output, the photo folder included."""
        result = orchestrator.export(aggregate, ExportOptions(include_photos=False), output_dir)

        assert isinstance(result, Ok)
        assert sorted(p.name for p in output_dir.iterdir()) == sorted([DOCUMENT_NAME, TEXT_NAME])
        assert text_photo_names((output_dir / TEXT_NAME).read_text(encoding="utf-8")) == []
        assert result.value.photos == []
        assert result.value.statistics.photos_exported == 0

    def test_text_and_photo_folder(self, orchestrator, aggregate, output_dir):
        """Text plus folder: photo-less items say so, FOTO/ holds exactly the listed files."""
        sicurezza = aggregate.sections[0].model_copy(update={"items": [aggregate.sections[0].items[1]]})
        source = aggregate.model_copy(update={"sections": [sicurezza, aggregate.sections[1]]})
        options = ExportOptions(formats=frozenset({ExportFormat.TEXT, ExportFormat.PHOTO_FOLDER}))

        result = orchestrator.export(source, options, output_dir)

        assert isinstance(result, Ok)
        assert sorted(p.name for p in output_dir.iterdir()) == sorted(["FOTO", TEXT_NAME])
        text = (output_dir / TEXT_NAME).read_text(encoding="utf-8")
        lines = [line.strip() for line in text.splitlines()]

        sicurezza_item = lines.index("1. Barriere fotoelettriche")
        meccanica_item = lines.index("1. Controllo cinghia")
        assert lines.index("Foto: Nessuna foto", sicurezza_item) < meccanica_item
        assert lines.index("Foto: 2 foto acquisite", meccanica_item) > meccanica_item

        referenced = text_photo_names(text)
        assert len(referenced) == 2
        assert all(name.startswith("02_meccanica_") for name in referenced)
        assert sorted(p.name for p in (output_dir / "FOTO").iterdir()) == sorted(referenced)

    def test_stage_sequence(self, orchestrator, aggregate, output_dir):
        """A successful run walks the linear state machine."""
        stages = []
        orchestrator.export(aggregate, ExportOptions.complete(), output_dir, on_stage=stages.append)

        assert stages == [
            ExportStage.VALIDATING,
            ExportStage.BUDGETING,
            ExportStage.PROCESSING,
            ExportStage.WRITING,
            ExportStage.DONE,
        ]

    def test_statistics(self, orchestrator, aggregate, output_dir):
        """The manifest carries run counters."""
        stats = orchestrator.export(aggregate, ExportOptions.complete(), output_dir).value.statistics

        assert stats.sections_processed == 2
        assert stats.items_processed == 3
        assert stats.photos_processed == 3
        assert stats.photos_exported == 3
        assert stats.spare_parts_included == 2

    def test_empty_formats_touch_nothing(self, orchestrator, aggregate, tmp_path):
        """No format selected returns an empty manifest without creating anything."""
        target = tmp_path / "never-created"
        result = orchestrator.export(aggregate, ExportOptions(formats=frozenset()), target)

        assert isinstance(result, Ok)
        assert result.value.files == []
        assert result.value.photos == []
        assert not target.exists()

    def test_missing_photo_single_warning(self, orchestrator, aggregate_with_missing_photo, output_dir):
        """A missing photo is one warning, one placeholder and no folder file."""
        result = orchestrator.export(aggregate_with_missing_photo, ExportOptions.complete(), output_dir)

        assert isinstance(result, Ok)
        manifest = result.value
        assert len(manifest.warnings) == 1
        assert manifest.warnings[0].code == ExportErrorCode.PHOTO_NOT_FOUND
        assert len(manifest.photos) == 2

        document = Document(io.BytesIO((output_dir / DOCUMENT_NAME).read_bytes()))
        placeholders = [
            cell
            for table in document.tables
            for row in table.rows
            for cell in row.cells
            if "[Foto non disponibile]" in cell.text
        ]
        assert len(placeholders) == 1

    def test_text_only_decodes_nothing(self, orchestrator, aggregate, output_dir):
        """Without photos no image is decoded and no photo is referenced."""
        with patch.object(PhotoProcessor, "process") as process:
            result = orchestrator.export(aggregate, ExportOptions.text_only(), output_dir)

        process.assert_not_called()
        assert isinstance(result, Ok)
        assert not (output_dir / "FOTO").exists()
        assert ".jpg" not in (output_dir / TEXT_NAME).read_text(encoding="utf-8")
        assert len(Document(io.BytesIO((output_dir / DOCUMENT_NAME).read_bytes())).inline_shapes) == 0

    def test_timestamped_directory(self, orchestrator, aggregate, output_dir):
        """Outputs land in Export_Checkup_<timestamp>/."""
        options = ExportOptions(create_timestamped_directory=True)
        result = orchestrator.export(aggregate, options, output_dir)

        export_dir = output_dir / "Export_Checkup_20251022_1430"
        assert result.value.export_directory == str(export_dir)
        assert (export_dir / DOCUMENT_NAME).exists()
        assert (export_dir / "FOTO").is_dir()

    def test_photo_archive_with_index(self, orchestrator, aggregate, output_dir):
        """The archive preset writes photos and the index only."""
        result = orchestrator.export(aggregate, ExportOptions.photo_archive(), output_dir)

        assert isinstance(result, Ok)
        assert sorted(p.name for p in output_dir.iterdir()) == ["FOTO", "FOTO_INDICE_20251022_1430.txt"]
        assert result.value.statistics.photos_processed == 0


class TestFailedExport:
    """Tests for fatal errors and cleanup."""

    def test_insufficient_storage(self, aggregate, output_dir):
        """Too little free space fails before anything is written."""
        stages = []
        result = make_orchestrator(free_bytes=1).export(
            aggregate, ExportOptions.complete(), output_dir, on_stage=stages.append
        )

        assert isinstance(result, Err)
        assert result.error.code == ExportErrorCode.INSUFFICIENT_STORAGE
        assert result.error.stage == ExportStage.BUDGETING
        assert stages[-1] == ExportStage.FAILED
        assert list(output_dir.iterdir()) == []

    def test_permission_denied(self, orchestrator, aggregate, output_dir):
        """An unwritable target is PERMISSION_DENIED during validation."""
        with patch("qreport.storage.files.os.access", return_value=False):
            result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        assert isinstance(result, Err)
        assert result.error.code == ExportErrorCode.PERMISSION_DENIED
        assert result.error.stage == ExportStage.VALIDATING

    def test_permission_error_while_writing(self, orchestrator, aggregate, output_dir):
        """A PermissionError mid-write rolls back files already written."""
        with patch.object(OutputTransaction, "write_text", side_effect=PermissionError(errno.EACCES, "denied")):
            result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        assert result.error.code == ExportErrorCode.PERMISSION_DENIED
        assert result.error.stage == ExportStage.WRITING
        assert list(output_dir.iterdir()) == []

    def test_disk_full_while_writing(self, orchestrator, aggregate, output_dir):
        """ENOSPC maps to INSUFFICIENT_STORAGE."""
        with patch.object(OutputTransaction, "write_text", side_effect=OSError(errno.ENOSPC, "No space left")):
            result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        assert result.error.code == ExportErrorCode.INSUFFICIENT_STORAGE
        assert list(output_dir.iterdir()) == []

    def test_other_os_error(self, orchestrator, aggregate, output_dir):
        """Other OS failures are WRITE_FAILED."""
        with patch.object(OutputTransaction, "copy_file", side_effect=OSError(errno.EIO, "I/O error")):
            result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        assert result.error.code == ExportErrorCode.WRITE_FAILED
        assert list(output_dir.iterdir()) == []

    def test_invalid_options(self, orchestrator, aggregate, output_dir):
        """Invalid options fail validation."""
        options = ExportOptions(compression=CompressionPolicy(watermark=True, watermark_text=""))
        result = orchestrator.export(aggregate, options, output_dir)

        assert result.error.code == ExportErrorCode.INVALID_OPTIONS
        assert result.error.stage == ExportStage.VALIDATING

    def test_missing_template(self, orchestrator, aggregate, output_dir, tmp_path):
        """A missing template file fails during validation."""
        options = ExportOptions(custom_template=ReportTemplate(base_document_path=str(tmp_path / "x.docx")))
        result = orchestrator.export(aggregate, options, output_dir)

        assert result.error.code == ExportErrorCode.TEMPLATE_NOT_FOUND
        assert result.error.stage == ExportStage.VALIDATING

    def test_document_generation_error(self, aggregate, output_dir):
        """A failing document stops the run and leaves nothing behind."""
        orchestrator = make_orchestrator()
        with patch.object(orchestrator.document_assembler, "_add_spare_parts", side_effect=ValueError("bad")):
            result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        assert result.error.code == ExportErrorCode.DOCUMENT_GENERATION_ERROR
        assert list(output_dir.iterdir()) == []


class TestCancellation:
    """Tests for user cancellation."""

    def test_cancel_during_writing_removes_output(self, orchestrator, aggregate, output_dir):
        """Cancelling after the first file was written removes it again."""
        token = CancellationToken()
        stages = []

        def on_stage(stage):
            stages.append(stage)
            if stage == ExportStage.WRITING:
                token.cancel()

        result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir, cancel=token, on_stage=on_stage)

        assert isinstance(result, Err)
        assert result.error.code == ExportErrorCode.EXPORT_CANCELLED
        assert stages[-1] == ExportStage.CANCELLED
        assert list(output_dir.iterdir()) == []

    def test_cancelled_re_export_keeps_previous_output(self, orchestrator, aggregate, output_dir):
        """Cancelling a second run into the same directory leaves the first run's files intact."""
        assert isinstance(orchestrator.export(aggregate, ExportOptions.complete(), output_dir), Ok)
        before = {p: p.read_bytes() for p in output_dir.rglob("*") if p.is_file()}
        assert len(before) == 5

        token = CancellationToken()

        def on_stage(stage):
            if stage == ExportStage.WRITING:
                token.cancel()

        result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir, cancel=token, on_stage=on_stage)

        assert result.error.code == ExportErrorCode.EXPORT_CANCELLED
        after = {p: p.read_bytes() for p in output_dir.rglob("*") if p.is_file()}
        assert after == before

    def test_failed_re_export_keeps_previous_output(self, orchestrator, aggregate, output_dir):
        """A write failure on re-export restores the files it had replaced."""
        orchestrator.export(aggregate, ExportOptions.complete(), output_dir)
        before = {p: p.read_bytes() for p in output_dir.rglob("*") if p.is_file()}

        with patch.object(OutputTransaction, "write_text", side_effect=OSError(errno.EIO, "I/O error")):
            result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir)

        assert result.error.code == ExportErrorCode.WRITE_FAILED
        assert {p: p.read_bytes() for p in output_dir.rglob("*") if p.is_file()} == before

    def test_cancel_before_start(self, orchestrator, aggregate, output_dir):
        """A token cancelled up front stops after validation."""
        token = CancellationToken()
        token.cancel()

        result = orchestrator.export(aggregate, ExportOptions.complete(), output_dir, cancel=token)

        assert result.error.code == ExportErrorCode.EXPORT_CANCELLED
        assert list(output_dir.iterdir()) == []


class TestStateMachine:
    """Tests for lifecycle transitions."""

    def test_skipping_a_stage_is_rejected(self):
        machine = ExportStateMachine()
        with pytest.raises(InvalidTransition):
            machine.advance(ExportStage.WRITING)

    def test_terminal_stage_is_final(self):
        machine = ExportStateMachine()
        machine.advance(ExportStage.FAILED)
        with pytest.raises(InvalidTransition):
            machine.advance(ExportStage.BUDGETING)
        assert machine.history == [ExportStage.VALIDATING, ExportStage.FAILED]
