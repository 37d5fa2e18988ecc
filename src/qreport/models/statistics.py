"""Check-up statistics shared by the document and the text report."""

from pydantic import Field

from .base import BaseExportModel, CheckItemStatus, CriticalityLevel
from .checkup import CheckItem, CheckUpAggregate


def _percentage(part: int, total: int) -> float:
    return (part * 100.0) / total if total > 0 else 0.0


class SectionStatistics(BaseExportModel):
    """Counters for one section."""

    total_items: int = 0
    ok_items: int = 0
    nok_items: int = 0
    critical_items: int = 0
    pending_items: int = 0
    na_items: int = 0
    photo_count: int = 0

    @classmethod
    def from_items(cls, items: list[CheckItem]) -> "SectionStatistics":
        counts = dict.fromkeys(CheckItemStatus, 0)
        critical = 0
        photos = 0
        for item in items:
            counts[item.status] += 1
            if item.criticality == CriticalityLevel.CRITICAL or item.status == CheckItemStatus.CRITICAL:
                critical += 1
            photos += len(item.photos)
        return cls(
            total_items=len(items),
            ok_items=counts[CheckItemStatus.OK],
            nok_items=counts[CheckItemStatus.NOK],
            critical_items=critical,
            pending_items=counts[CheckItemStatus.PENDING],
            na_items=counts[CheckItemStatus.NA],
            photo_count=photos,
        )

    @property
    def has_issues(self) -> bool:
        return self.nok_items > 0 or self.critical_items > 0


class CheckUpStatistics(BaseExportModel):
    """Aggregate counters for a whole check-up, computed in one pass."""

    total_sections: int = 0
    total_items: int = 0
    ok_items: int = 0
    nok_items: int = 0
    pending_items: int = 0
    na_items: int = 0
    critical_issues: int = Field(default=0, description="Items critical by status or criticality")
    important_issues: int = 0
    total_photos: int = 0
    sections_with_issues: int = 0

    @classmethod
    def from_aggregate(cls, aggregate: CheckUpAggregate) -> "CheckUpStatistics":
        counts = dict.fromkeys(CheckItemStatus, 0)
        critical = important = photos = sections_with_issues = 0

        for section in aggregate.sections:
            section_has_issue = False
            for item in section.items:
                counts[item.status] += 1
                if item.criticality == CriticalityLevel.CRITICAL or item.status == CheckItemStatus.CRITICAL:
                    critical += 1
                elif item.criticality == CriticalityLevel.IMPORTANT:
                    important += 1
                photos += len(item.photos)
                section_has_issue = section_has_issue or item.has_issue
            if section_has_issue:
                sections_with_issues += 1

        return cls(
            total_sections=len(aggregate.sections),
            total_items=sum(counts.values()),
            ok_items=counts[CheckItemStatus.OK],
            nok_items=counts[CheckItemStatus.NOK] + counts[CheckItemStatus.CRITICAL],
            pending_items=counts[CheckItemStatus.PENDING],
            na_items=counts[CheckItemStatus.NA],
            critical_issues=critical,
            important_issues=important,
            total_photos=photos,
            sections_with_issues=sections_with_issues,
        )

    @property
    def completed_items(self) -> int:
        return self.total_items - self.pending_items

    @property
    def ok_percentage(self) -> float:
        return _percentage(self.ok_items, self.total_items)

    @property
    def nok_percentage(self) -> float:
        return _percentage(self.nok_items, self.total_items)

    @property
    def na_percentage(self) -> float:
        return _percentage(self.na_items, self.total_items)

    @property
    def completion_percentage(self) -> float:
        return _percentage(self.completed_items, self.total_items)

    @property
    def overall_status(self) -> str:
        """One-line verdict for the executive summary."""
        if self.critical_issues > 0:
            return "CRITICO - Intervento immediato richiesto"
        if self.nok_items > self.total_items * 0.1:
            return "ATTENZIONE - Problemi rilevati"
        if self.ok_percentage >= 95.0:
            return "OTTIMO - Sistema in perfette condizioni"
        if self.ok_percentage >= 85.0:
            return "BUONO - Sistema funzionale"
        return "SUFFICIENTE - Monitoraggio richiesto"
