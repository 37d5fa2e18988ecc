"""Check-up aggregate models.

The aggregate is assembled by the caller (persistence, UI) and handed to the
export engine read-only. Hierarchy:
- CheckUpAggregate → CheckUpHeader (client, technician, island)
- CheckUpAggregate → Sections → CheckItems → PhotoRefs
- CheckUpAggregate → SpareParts
"""

from datetime import datetime
from pathlib import Path
from typing import Iterator, NamedTuple, Optional

from pydantic import Field

from .base import BaseExportModel, CheckItemStatus, CriticalityLevel, SparePartUrgency


class ClientInfo(BaseExportModel):
    """Customer owning the inspected island."""

    company_name: str
    contact_person: str = ""
    site: str = ""
    address: str = ""


class TechnicianInfo(BaseExportModel):
    """Technician who performed the check-up."""

    name: str
    company: str = ""
    phone: str = ""
    email: str = ""


class IslandInfo(BaseExportModel):
    """Robotic island under inspection."""

    island_type: str = Field(..., description="Display name, e.g. 'POLY Move'")
    serial_number: str = ""
    model: str = ""
    operating_hours: int = Field(default=0, ge=0)


class CheckUpHeader(BaseExportModel):
    """Header block of a check-up."""

    client: ClientInfo
    technician: TechnicianInfo
    island: IslandInfo
    scheduled_at: Optional[datetime] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: str = Field(default="Completato", description="Display status of the check-up")
    notes: str = ""


class PhotoRef(BaseExportModel):
    """Reference to a photo taken for a check item."""

    file_path: str
    caption: str = ""
    taken_at: datetime
    width: Optional[int] = Field(None, gt=0, description="Original width in pixels")
    height: Optional[int] = Field(None, gt=0, description="Original height in pixels")
    file_size_bytes: Optional[int] = Field(None, ge=0, description="Original file size")

    @property
    def path(self) -> Path:
        """Return file path as Path object."""
        return Path(self.file_path)


class CheckItem(BaseExportModel):
    """One inspected point of a section."""

    id: str
    item_code: str = ""
    title: str
    status: CheckItemStatus = CheckItemStatus.PENDING
    criticality: CriticalityLevel = CriticalityLevel.NA
    notes: str = ""
    photos: list[PhotoRef] = Field(default_factory=list)

    @property
    def has_issue(self) -> bool:
        """NOK or critical items need attention in the report."""
        return (
            self.status in (CheckItemStatus.NOK, CheckItemStatus.CRITICAL)
            or self.criticality == CriticalityLevel.CRITICAL
        )


class Section(BaseExportModel):
    """Named grouping of check items, e.g. 'Sicurezza'."""

    title: str
    items: list[CheckItem] = Field(default_factory=list)

    @property
    def photo_count(self) -> int:
        return sum(len(item.photos) for item in self.items)


class SparePart(BaseExportModel):
    """Spare part recommended during the check-up."""

    part_number: str
    description: str
    quantity: int = Field(default=1, ge=1)
    urgency: SparePartUrgency = SparePartUrgency.ROUTINE
    estimated_cost: Optional[float] = Field(None, ge=0.0)
    notes: str = ""


class PhotoSlot(NamedTuple):
    """Position of a photo inside the aggregate."""

    section_index: int
    section: Section
    item_index: int
    item: CheckItem
    photo_index: int
    photo: PhotoRef


class CheckUpAggregate(BaseExportModel):
    """
    Full record of one maintenance inspection.

    Owned by the caller; the export engine never mutates it.
    """

    id: str
    header: CheckUpHeader
    sections: list[Section] = Field(default_factory=list)
    spare_parts: list[SparePart] = Field(default_factory=list)

    def all_items(self) -> list[CheckItem]:
        """All check items in section order."""
        return [item for section in self.sections for item in section.items]

    @property
    def photo_count(self) -> int:
        return sum(section.photo_count for section in self.sections)

    def iter_photo_slots(self) -> Iterator[PhotoSlot]:
        """Yield every photo with its position, sections → items → photos."""
        for section_index, section in enumerate(self.sections):
            for item_index, item in enumerate(section.items):
                for photo_index, photo in enumerate(item.photos):
                    yield PhotoSlot(section_index, section, item_index, item, photo_index, photo)
