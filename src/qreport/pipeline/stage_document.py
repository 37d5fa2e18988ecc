"""Document Assembly Stage - Build the Word report with python-docx.

Layout, top to bottom:
1. Logo (optional) and title
2. General information table (client, technician, island)
3. Executive summary
4. Per section: items table, then the photo grid
5. Spare parts table
6. Signature block; template footer text on every page

Photos are processed one window at a time and each ProcessedPhoto is dropped
as soon as it is embedded.
"""

import io
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Optional

from docx import Document
from docx.document import Document as DocxDocument
from docx.enum.table import WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt, RGBColor
from pydantic import Field

from qreport.config import settings
from qreport.models import (
    BaseExportModel,
    CheckItem,
    CheckItemStatus,
    CheckUpAggregate,
    CheckUpStatistics,
    CriticalityLevel,
    Err,
    ExportError,
    ExportErrorCode,
    ExportOptions,
    ExportStage,
    ExportWarning,
    Ok,
    PhotoSlot,
    ReportTemplate,
    Result,
    Section,
)

from .cancellation import CancellationToken, ExportCancelled, checkpoint
from .naming import NamingResolver
from .stage_photo import PhotoProcessor, iter_processed

logger = logging.getLogger(__name__)

SCREEN_DPI = 96
PHOTO_PLACEHOLDER = "[Foto non disponibile]"

STATUS_GLYPHS = {
    CheckItemStatus.OK: "✔",
    CheckItemStatus.NOK: "✘",
    CheckItemStatus.CRITICAL: "⚠",
    CheckItemStatus.PENDING: "…",
    CheckItemStatus.NA: "–",
}

CRITICALITY_GLYPHS = {
    CriticalityLevel.CRITICAL: "●",
    CriticalityLevel.IMPORTANT: "◐",
    CriticalityLevel.ROUTINE: "○",
    CriticalityLevel.NA: "–",
}


class AssembledDocument(BaseExportModel):
    """Serialized document plus what happened while building it."""

    data: bytes = Field(..., repr=False)
    warnings: list[ExportWarning] = Field(default_factory=list)
    photos_embedded: int = 0
    placeholders: int = 0

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def photo_cell_width_px(photos_per_row: int) -> int:
    """Grid cell width in pixels at 96 dpi."""
    if photos_per_row == 1:
        return 400
    if photos_per_row == 2:
        return 250
    return 200


def truncate_note(note: str, max_chars: int) -> str:
    if len(note) <= max_chars:
        return note
    return note[: max_chars - 3].rstrip() + "..."


def missing_template_paths(template: Optional[ReportTemplate]) -> list[str]:
    """Files referenced by ``template`` that do not exist."""
    if template is None:
        return []
    return [path for path in template.referenced_paths() if not Path(path).is_file()]


def _px(pixels: float) -> Inches:
    return Inches(pixels / SCREEN_DPI)


def _has_style(document: DocxDocument, name: str) -> bool:
    try:
        document.styles[name]
    except KeyError:
        return False
    return True


def _shade(cell, hex_color: str) -> None:
    """Fill a table cell background."""
    tc_pr = cell._tc.get_or_add_tcPr()
    shading = OxmlElement("w:shd")
    shading.set(qn("w:val"), "clear")
    shading.set(qn("w:color"), "auto")
    shading.set(qn("w:fill"), hex_color)
    tc_pr.append(shading)


class _DocumentBuilder:
    """Mutable state of one document build."""

    def __init__(
        self,
        template: ReportTemplate,
        options: ExportOptions,
        naming: NamingResolver,
        note_max_chars: int,
    ):
        self.template = template
        self.options = options
        self.naming = naming
        self.note_max_chars = note_max_chars
        self.warnings: list[ExportWarning] = []
        self.photos_embedded = 0
        self.placeholders = 0

        if template.base_document_path:
            self.document = Document(template.base_document_path)
        else:
            self.document = Document()

        if _has_style(self.document, "Normal"):
            normal = self.document.styles["Normal"]
            normal.font.name = template.font_family
            normal.font.size = Pt(template.base_font_size)

    @property
    def header_color(self) -> RGBColor:
        return RGBColor.from_string(self.template.header_color.upper())

    def heading(self, text: str, level: int = 1) -> None:
        style = f"Heading {level}"
        if _has_style(self.document, style):
            self.document.add_heading(text, level=level)
            return
        run = self.document.add_paragraph().add_run(text)
        run.bold = True
        run.font.size = Pt(self.template.base_font_size + (6 if level == 1 else 3))
        run.font.color.rgb = self.header_color

    def table(self, rows: int, cols: int):
        table = self.document.add_table(rows=rows, cols=cols)
        if _has_style(self.document, "Table Grid"):
            table.style = "Table Grid"
        table.alignment = WD_TABLE_ALIGNMENT.CENTER
        return table

    def header_row(self, table, labels: list[str]) -> None:
        for cell, label in zip(table.rows[0].cells, labels):
            cell.text = ""
            run = cell.paragraphs[0].add_run(label)
            run.bold = True
            run.font.color.rgb = RGBColor(0xFF, 0xFF, 0xFF)
            _shade(cell, self.template.header_color.upper())

    def key_value_table(self, rows: list[tuple[str, str]]) -> None:
        table = self.table(len(rows), 2)
        for row, (label, value) in zip(table.rows, rows):
            row.cells[0].text = ""
            row.cells[0].paragraphs[0].add_run(label).bold = True
            row.cells[1].text = value

    def finish(self) -> bytes:
        buffer = io.BytesIO()
        self.document.save(buffer)
        return buffer.getvalue()


class DocumentAssembler:
    """Builds the .docx report of a check-up."""

    def __init__(
        self,
        processor: Optional[PhotoProcessor] = None,
        max_workers: int = None,
        note_max_chars: int = None,
    ):
        """Initialize assembler.

        Args:
            processor: Photo processor (default: one built from settings)
            max_workers: Photo decode pool size (default from settings)
            note_max_chars: Longest note shown in the items table
        """
        self.processor = processor or PhotoProcessor()
        self.max_workers = max_workers
        self.note_max_chars = note_max_chars or settings.note_max_chars

    def assemble(
        self,
        aggregate: CheckUpAggregate,
        options: ExportOptions,
        naming: NamingResolver,
        cancel: Optional[CancellationToken] = None,
        generated_at: Optional[datetime] = None,
    ) -> Result[AssembledDocument]:
        """Build the document.

        Args:
            aggregate: Check-up to report on
            options: Export options
            naming: Resolver shared with the other generators of the run
            cancel: Token checked between sections and between photos
            generated_at: Timestamp printed in the signature block

        Returns:
            Ok(AssembledDocument) or Err with TEMPLATE_NOT_FOUND /
            DOCUMENT_GENERATION_ERROR

        Raises:
            ExportCancelled: The token was cancelled.
        """
        template = options.custom_template or ReportTemplate()
        missing = missing_template_paths(template)
        if missing:
            return Err(
                ExportError(
                    code=ExportErrorCode.TEMPLATE_NOT_FOUND,
                    message=f"Template file not found: {missing[0]}",
                    stage=ExportStage.PROCESSING,
                    resource=missing[0],
                )
            )

        generated_at = generated_at or datetime.now()
        try:
            builder = _DocumentBuilder(template, options, naming, self.note_max_chars)
            self._add_title(builder, aggregate)
            self._add_general_info(builder, aggregate)
            self._add_summary(builder, CheckUpStatistics.from_aggregate(aggregate))

            for section_index, section in enumerate(aggregate.sections):
                checkpoint(cancel, "document section")
                self._add_section(builder, section_index, section, cancel)

            self._add_spare_parts(builder, aggregate)
            self._add_signature(builder, aggregate, generated_at)
            self._add_page_footer(builder)

            data = builder.finish()
        except ExportCancelled:
            raise
        except Exception as e:
            logger.exception("Document generation failed for check-up %s", aggregate.id)
            return Err(
                ExportError(
                    code=ExportErrorCode.DOCUMENT_GENERATION_ERROR,
                    message=f"Document generation failed: {e}",
                    stage=ExportStage.PROCESSING,
                )
            )

        logger.info(
            "Document assembled: %d bytes, %d photos, %d placeholders",
            len(data),
            builder.photos_embedded,
            builder.placeholders,
        )
        return Ok(
            AssembledDocument(
                data=data,
                warnings=builder.warnings,
                photos_embedded=builder.photos_embedded,
                placeholders=builder.placeholders,
            )
        )

    def _add_title(self, builder: _DocumentBuilder, aggregate: CheckUpAggregate) -> None:
        document = builder.document
        if builder.template.logo_path:
            document.add_picture(builder.template.logo_path, width=Inches(1.5))

        title = document.add_paragraph()
        title.alignment = WD_ALIGN_PARAGRAPH.CENTER
        run = title.add_run(f"REPORT CHECKUP {aggregate.header.island.island_type.upper()}")
        run.bold = True
        run.font.size = Pt(18)
        run.font.color.rgb = builder.header_color

        subtitle = document.add_paragraph()
        subtitle.alignment = WD_ALIGN_PARAGRAPH.CENTER
        subtitle.add_run(aggregate.header.client.company_name).italic = True

    def _add_general_info(self, builder: _DocumentBuilder, aggregate: CheckUpAggregate) -> None:
        header = aggregate.header
        rows = [("Cliente", header.client.company_name)]
        if header.client.contact_person:
            rows.append(("Contatto", header.client.contact_person))
        if header.client.site:
            rows.append(("Sito", header.client.site))
        rows.append(("Tipo Isola", header.island.island_type))
        if header.island.serial_number:
            rows.append(("Numero di Serie", header.island.serial_number))
        if header.island.model:
            rows.append(("Modello", header.island.model))
        if header.island.operating_hours > 0:
            rows.append(("Ore Funzionamento", f"{header.island.operating_hours}h"))
        rows.append(("Tecnico", header.technician.name))
        if header.technician.company:
            rows.append(("Azienda Tecnico", header.technician.company))
        rows.append(("Data Checkup", f"{header.started_at:%d/%m/%Y %H:%M}"))
        rows.append(("Stato", header.status))

        builder.heading("Informazioni Generali", level=1)
        builder.key_value_table(rows)
        if header.notes:
            builder.document.add_paragraph(header.notes)

    def _add_summary(self, builder: _DocumentBuilder, stats: CheckUpStatistics) -> None:
        builder.heading("Riepilogo Esecutivo", level=1)
        builder.key_value_table(
            [
                ("Stato Generale", stats.overall_status),
                ("Controlli Totali", str(stats.total_items)),
                ("Controlli OK", f"{stats.ok_items} ({stats.ok_percentage:.1f}%)"),
                ("Controlli NOK", f"{stats.nok_items} ({stats.nok_percentage:.1f}%)"),
                ("Criticità", str(stats.critical_issues)),
                ("Completamento", f"{stats.completion_percentage:.1f}%"),
                ("Foto Acquisite", str(stats.total_photos)),
            ]
        )

    def _add_section(
        self,
        builder: _DocumentBuilder,
        section_index: int,
        section: Section,
        cancel: Optional[CancellationToken],
    ) -> None:
        builder.heading(f"{section_index + 1}. {section.title}", level=2)
        if section.items:
            self._add_items_table(builder, section.items)

        if builder.options.include_photos and section.photo_count > 0:
            slots = [
                PhotoSlot(section_index, section, item_index, item, photo_index, photo)
                for item_index, item in enumerate(section.items)
                for photo_index, photo in enumerate(item.photos)
            ]
            self._add_photo_grid(builder, slots, cancel)

    def _add_items_table(self, builder: _DocumentBuilder, items: list[CheckItem]) -> None:
        labels = ["Controllo", "Stato", "Criticità"]
        if builder.options.include_notes:
            labels.append("Note")

        table = builder.table(len(items) + 1, len(labels))
        builder.header_row(table, labels)
        for row, item in zip(table.rows[1:], items):
            cells = row.cells
            cells[0].text = f"{item.item_code} {item.title}".strip()
            cells[1].text = f"{STATUS_GLYPHS[item.status]} {item.status.display_name}"
            cells[2].text = f"{CRITICALITY_GLYPHS[item.criticality]} {item.criticality.display_name}"
            if builder.options.include_notes:
                cells[3].text = truncate_note(item.notes, builder.note_max_chars)

    def _add_photo_grid(
        self,
        builder: _DocumentBuilder,
        slots: list[PhotoSlot],
        cancel: Optional[CancellationToken],
    ) -> None:
        per_row = builder.options.photos_per_row
        width_px = photo_cell_width_px(per_row)
        table = builder.table(math.ceil(len(slots) / per_row), per_row)

        results = iter_processed(
            self.processor,
            (slot.photo for slot in slots),
            builder.options.compression,
            max_workers=self.max_workers,
            cancel=cancel,
        )
        for position, (slot, (_, result)) in enumerate(zip(slots, results)):
            cell = table.rows[position // per_row].cells[position % per_row]
            cell.width = _px(width_px)
            name = builder.naming.resolve_slot(slot)
            paragraph = cell.paragraphs[0]
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER

            if isinstance(result, Err):
                paragraph.add_run(PHOTO_PLACEHOLDER).italic = True
                builder.placeholders += 1
                builder.warnings.append(ExportWarning.from_error(result.error, ExportStage.PROCESSING))
                logger.warning("Photo placeholder for %s: %s", slot.photo.file_path, result.error.message)
            else:
                photo = result.value
                paragraph.add_run().add_picture(
                    io.BytesIO(photo.data),
                    width=_px(width_px),
                    height=_px(width_px * photo.aspect_ratio),
                )
                builder.photos_embedded += 1

            caption = cell.add_paragraph()
            caption.alignment = WD_ALIGN_PARAGRAPH.CENTER
            caption_run = caption.add_run(name)
            caption_run.font.size = Pt(8)

    def _add_spare_parts(self, builder: _DocumentBuilder, aggregate: CheckUpAggregate) -> None:
        builder.heading("Parti di Ricambio", level=1)
        parts = aggregate.spare_parts
        if not parts:
            builder.document.add_paragraph("Nessuna parte di ricambio richiesta.")
            return

        table = builder.table(len(parts) + 1, 5)
        builder.header_row(table, ["Codice", "Descrizione", "Quantità", "Urgenza", "Costo Stimato"])
        for row, part in zip(table.rows[1:], parts):
            cells = row.cells
            cells[0].text = part.part_number
            cells[1].text = part.description
            cells[2].text = str(part.quantity)
            cells[3].text = part.urgency.display_name
            cells[4].text = f"€ {part.estimated_cost:.2f}" if part.estimated_cost is not None else "-"

    def _add_signature(
        self,
        builder: _DocumentBuilder,
        aggregate: CheckUpAggregate,
        generated_at: datetime,
    ) -> None:
        document = builder.document
        document.add_paragraph()
        document.add_paragraph(f"Report generato il {generated_at:%d/%m/%Y %H:%M}")
        document.add_paragraph(f"Tecnico: {aggregate.header.technician.name}")
        document.add_paragraph("Firma: ____________________")

    def _add_page_footer(self, builder: _DocumentBuilder) -> None:
        for section in builder.document.sections:
            paragraph = section.footer.paragraphs[0]
            paragraph.text = builder.template.footer_text
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
