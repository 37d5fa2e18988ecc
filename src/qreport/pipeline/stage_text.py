"""Text Report Stage - 80-column plain-text summary of a check-up.

Pure string formatting: photos are referenced by their resolved file names
and never decoded.
"""

import calendar
import logging
import textwrap
from datetime import datetime, timedelta
from typing import Collection, Optional

from qreport.config import settings
from qreport.models import (
    CheckItem,
    CheckItemStatus,
    CheckUpAggregate,
    CheckUpStatistics,
    CriticalityLevel,
    ExportOptions,
    SectionStatistics,
    SparePart,
    SparePartUrgency,
)

from .naming import NamingResolver

logger = logging.getLogger(__name__)

LINE_WIDTH = 80
BANNER = "=" * LINE_WIDTH
LABEL_WIDTH = 22

URGENCY_HEADINGS = {
    SparePartUrgency.CRITICAL: "RICAMBI CRITICI (Sostituire immediatamente):",
    SparePartUrgency.IMPORTANT: "RICAMBI IMPORTANTI (Sostituire entro 30 giorni):",
    SparePartUrgency.ROUTINE: "RICAMBI ROUTINE (Sostituire alla prossima manutenzione):",
}


def add_months(moment: datetime, months: int) -> datetime:
    """Same day ``months`` later, clamped to the last day of the month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_checkup(stats: CheckUpStatistics, from_date: datetime) -> tuple[datetime, str]:
    """Suggested next check-up date and the reason for it."""
    if stats.critical_issues > 0:
        return from_date + timedelta(weeks=2), "Verifica risoluzione criticità"
    if stats.nok_percentage > 15.0:
        return add_months(from_date, 1), "Monitoraggio problemi rilevati"
    if stats.ok_percentage >= 95.0:
        return add_months(from_date, 6), "Manutenzione preventiva standard"
    return add_months(from_date, 3), "Controllo periodico raccomandato"


def item_action(item: CheckItem) -> str:
    """Recommended action for a check item, empty when none is needed."""
    failed = item.status in (CheckItemStatus.NOK, CheckItemStatus.CRITICAL)
    if failed and item.criticality == CriticalityLevel.CRITICAL:
        return "Sostituire entro 24h"
    if item.criticality == CriticalityLevel.CRITICAL or item.status == CheckItemStatus.CRITICAL:
        return "Intervento immediato necessario"
    if failed and item.criticality == CriticalityLevel.IMPORTANT:
        return "Programmare sostituzione"
    if failed:
        return "Monitorare nelle prossime verifiche"
    return ""


def center(text: str, width: int = LINE_WIDTH) -> str:
    return " " * max(0, (width - len(text)) // 2) + text


def wrap_field(prefix: str, value: str) -> list[str]:
    """Wrap ``value`` after ``prefix`` so that no line exceeds 80 columns."""
    if not value:
        return [prefix.rstrip()]
    return textwrap.wrap(
        value,
        width=LINE_WIDTH,
        initial_indent=prefix,
        subsequent_indent=" " * len(prefix),
        break_on_hyphens=False,
    ) or [prefix.rstrip()]


def photo_reference(name: str) -> str:
    """List entry for a photo file name.

    Names are never split; the indent shrinks so that names up to 80
    characters still fit on one line.
    """
    entry = f"- {name}" if len(name) + 2 <= LINE_WIDTH else name
    return " " * min(6, LINE_WIDTH - len(entry)) + entry


def _heading(title: str, underline: str = "-") -> list[str]:
    lines = textwrap.wrap(title, width=LINE_WIDTH, break_on_hyphens=False) or [title]
    return lines + [underline * max(len(line) for line in lines)]


def _banner(title: str) -> list[str]:
    return [BANNER, center(title), BANNER, ""]


class TextReportRenderer:
    """Renders the plain-text check-up summary."""

    def __init__(self, app_name: str = None):
        self.app_name = app_name or settings.app_name

    def render(
        self,
        aggregate: CheckUpAggregate,
        options: ExportOptions,
        naming: NamingResolver,
        generated_at: Optional[datetime] = None,
        available_photos: Optional[Collection[str]] = None,
    ) -> str:
        """Render the report.

        Args:
            aggregate: Check-up to report on
            options: Export options (include_photos, include_notes)
            naming: Resolver shared with the other generators of the run
            generated_at: Report timestamp (default now)
            available_photos: File names actually present in the photo folder;
                other photos are counted but not listed. None lists every photo.

        Returns:
            Report text, newline terminated.
        """
        generated_at = generated_at or datetime.now()
        stats = CheckUpStatistics.from_aggregate(aggregate)

        lines: list[str] = []
        lines += _banner("REPORT CHECKUP INDUSTRIALE")
        lines += self._general_info(aggregate)
        lines.append("")
        lines += self._executive_summary(stats)
        lines.append("")
        lines += self._sections_detail(aggregate, options, naming, available_photos)
        lines += self._spare_parts(aggregate.spare_parts)
        lines.append("")
        lines += self._conclusions(aggregate, stats, generated_at)
        lines += self._footer(aggregate, generated_at)

        logger.debug("Rendered text report: %d lines", len(lines))
        return "\n".join(lines) + "\n"

    def _general_info(self, aggregate: CheckUpAggregate) -> list[str]:
        header = aggregate.header
        lines = _heading("INFORMAZIONI GENERALI")

        def field(label: str, value: str) -> None:
            lines.extend(wrap_field(f"{label}:".ljust(LABEL_WIDTH), value))

        field("Cliente", header.client.company_name)
        if header.client.contact_person:
            field("Contatto", header.client.contact_person)
        if header.client.site:
            field("Sito", header.client.site)
        if header.client.address:
            field("Indirizzo", header.client.address)
        field("Tipo Isola", header.island.island_type)
        if header.island.serial_number:
            field("Serial Isola", header.island.serial_number)
        if header.island.model:
            field("Modello Isola", header.island.model)
        if header.island.operating_hours > 0:
            field("Ore Funzionamento", f"{header.island.operating_hours}h")
        field("Data Checkup", f"{header.started_at:%d/%m/%Y}")
        field("Tecnico Responsabile", header.technician.name)
        if header.technician.company:
            field("Azienda Tecnico", header.technician.company)
        field("Ora Inizio", f"{header.started_at:%H:%M}")
        if header.completed_at is not None:
            field("Ora Fine", f"{header.completed_at:%H:%M}")
            minutes = int((header.completed_at - header.started_at).total_seconds() // 60)
            field("Durata Totale", f"{minutes // 60}h {minutes % 60}m")
        else:
            field("Ora Fine", "In corso")
        field("Stato Checkup", header.status)
        if header.notes:
            field("Note Generali", header.notes)
        return lines

    def _executive_summary(self, stats: CheckUpStatistics) -> list[str]:
        lines = _heading("RIEPILOGO ESECUTIVO")
        rows = [
            ("Stato Generale", stats.overall_status),
            ("Controlli Totali", str(stats.total_items)),
            ("Controlli OK", f"{stats.ok_items} ({stats.ok_percentage:.1f}%)"),
            ("Controlli NOK", f"{stats.nok_items} ({stats.nok_percentage:.1f}%)"),
            ("Controlli N/A", f"{stats.na_items} ({stats.na_percentage:.1f}%)"),
            ("Controlli Pending", str(stats.pending_items)),
            ("Completamento", f"{stats.completion_percentage:.1f}%"),
            ("Criticità Rilevate", str(stats.critical_issues)),
            ("Avvisi Importanti", str(stats.important_issues)),
            ("Foto Acquisite", str(stats.total_photos)),
        ]
        if stats.sections_with_issues > 0:
            rows.append(("Sezioni con Problemi", f"{stats.sections_with_issues}/{stats.total_sections}"))
        for label, value in rows:
            lines.extend(wrap_field(f"{label}:".ljust(LABEL_WIDTH), value))

        if stats.critical_issues > 0:
            lines += ["", f"ATTENZIONE: Rilevate {stats.critical_issues} criticità che richiedono intervento immediato!"]
        elif stats.important_issues > 0:
            lines += ["", f"Presenti {stats.important_issues} problemi importanti da monitorare."]
        elif stats.total_items > 0 and stats.ok_percentage >= 95.0:
            lines += ["", "Checkup completato con successo - Sistema in ottime condizioni."]
        return lines

    def _sections_detail(
        self,
        aggregate: CheckUpAggregate,
        options: ExportOptions,
        naming: NamingResolver,
        available_photos: Optional[Collection[str]],
    ) -> list[str]:
        lines = _banner("DETTAGLIO CONTROLLI")

        for section_index, section in enumerate(aggregate.sections):
            section_stats = SectionStatistics.from_items(section.items)
            lines += _heading(f"SEZIONE {section_index + 1}: {section.title.upper()}")
            lines.append(
                f"Controlli Totali: {section_stats.total_items}  |  "
                f"OK: {section_stats.ok_items}  |  "
                f"NOK: {section_stats.nok_items}  |  "
                f"Critici: {section_stats.critical_items}"
            )
            lines.append("")

            for item_index, item in enumerate(section.items):
                lines += self._item_detail(
                    section_index, section.title, item, item_index, options, naming, available_photos
                )
                lines.append("")

        return lines

    def _item_detail(
        self,
        section_index: int,
        section_title: str,
        item: CheckItem,
        item_index: int,
        options: ExportOptions,
        naming: NamingResolver,
        available_photos: Optional[Collection[str]],
    ) -> list[str]:
        lines = wrap_field(f"{item_index + 1}. ", item.title)
        if item.item_code:
            lines += wrap_field("   Codice: ", item.item_code)
        lines += wrap_field("   Stato: ", item.status.display_name)
        lines += wrap_field("   Criticità: ", item.criticality.display_name)
        if options.include_notes and item.notes:
            lines += wrap_field("   Note: ", item.notes)

        if options.include_photos:
            if not item.photos:
                lines.append("   Foto: Nessuna foto")
            else:
                names = [
                    naming.resolve(
                        section_index, section_title, item, photo_index, photo.caption, item_index=item_index
                    )
                    for photo_index, photo in enumerate(item.photos)
                ]
                if available_photos is not None:
                    names = [name for name in names if name in available_photos]
                missing = len(item.photos) - len(names)
                summary = f"   Foto: {len(item.photos)} foto acquisite"
                if missing:
                    summary += f", {missing} non disponibili" if missing > 1 else ", 1 non disponibile"
                lines.append(summary)
                lines.extend(photo_reference(name) for name in names)

        action = item_action(item)
        if action:
            lines += wrap_field("   Azione: ", action)
        return lines

    def _spare_parts(self, spare_parts: list[SparePart]) -> list[str]:
        lines = _banner("PARTI DI RICAMBIO")
        if not spare_parts:
            lines.append("Nessuna parte di ricambio richiesta.")
            return lines

        lines += _heading("RICAMBI CONSIGLIATI")
        lines.append("")
        for urgency in SparePartUrgency:
            parts = [part for part in spare_parts if part.urgency == urgency]
            if not parts:
                continue
            lines.append(URGENCY_HEADINGS[urgency])
            for part in parts:
                lines += wrap_field("  ", f"[{part.part_number}] {part.description}")
                lines.append(f"    Quantità: {part.quantity}")
                if part.estimated_cost is not None:
                    lines.append(f"    Costo Stimato: € {part.estimated_cost:.2f}")
                if part.notes:
                    lines += wrap_field("    Note: ", part.notes)
            lines.append("")

        total_cost = sum(part.estimated_cost * part.quantity for part in spare_parts if part.estimated_cost is not None)
        if total_cost > 0:
            lines.append(f"Costo Totale Stimato: € {total_cost:.2f}")
        return lines

    def _conclusions(
        self,
        aggregate: CheckUpAggregate,
        stats: CheckUpStatistics,
        generated_at: datetime,
    ) -> list[str]:
        lines = _banner("CONCLUSIONI")

        immediate = []
        if stats.critical_issues > 0:
            immediate.append(f"Sostituire immediatamente {stats.critical_issues} componenti critici")
        critical_parts = [p for p in aggregate.spare_parts if p.urgency == SparePartUrgency.CRITICAL]
        if critical_parts:
            immediate.append(f"Ordinare {len(critical_parts)} ricambi critici")

        general = []
        if stats.nok_percentage > 10.0:
            general.append(f"Programmare manutenzione straordinaria - {stats.nok_items} controlli falliti")
        if stats.pending_items > 0:
            general.append(f"Completare {stats.pending_items} controlli in attesa")
        if stats.total_photos > 50:
            general.append("Archiviare foto del checkup per storico manutenzioni")

        if immediate:
            lines += _heading("AZIONI IMMEDIATE RICHIESTE")
            for action in immediate:
                lines += wrap_field("- ", action)
            lines.append("")

        if general:
            lines += _heading("RACCOMANDAZIONI GENERALI")
            for recommendation in general:
                lines += wrap_field("- ", recommendation)
            lines.append("")

        next_date, reason = next_checkup(stats, generated_at)
        lines += _heading("PROSSIMO CHECKUP CONSIGLIATO")
        lines.append(f"Data Suggerita: {next_date:%d/%m/%Y}")
        lines += wrap_field("Motivazione:    ", reason)
        lines.append("")

        lines += _heading("VALIDAZIONE TECNICA")
        lines += wrap_field("Tecnico:      ", aggregate.header.technician.name)
        lines.append(f"Data Report:  {generated_at:%d/%m/%Y %H:%M}")
        lines.append("Firma:        ____________________")
        return lines

    def _footer(self, aggregate: CheckUpAggregate, generated_at: datetime) -> list[str]:
        lines = ["", BANNER]
        lines += wrap_field("Report generato automaticamente da ", self.app_name)
        lines.append(f"Data generazione: {generated_at:%d/%m/%Y %H:%M:%S}")
        lines += wrap_field("Cliente: ", aggregate.header.client.company_name)
        lines += wrap_field("Tecnico responsabile: ", aggregate.header.technician.name)
        lines.append(BANNER)
        return lines
