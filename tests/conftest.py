"""Pytest configuration and fixtures."""

from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from qreport.models import (
    CheckItem,
    CheckItemStatus,
    CheckUpAggregate,
    CheckUpHeader,
    ClientInfo,
    CriticalityLevel,
    IslandInfo,
    PhotoRef,
    Section,
    SparePart,
    SparePartUrgency,
    TechnicianInfo,
)

GENERATED_AT = datetime(2025, 10, 22, 14, 30, 52)


def make_jpeg(path: Path, size=(1600, 1200), color=(120, 140, 160), orientation: int = None) -> Path:
    """Write a solid-color JPEG, optionally tagged with an EXIF orientation."""
    image = Image.new("RGB", size, color)
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        image.save(path, "JPEG", quality=90, exif=exif.tobytes())
    else:
        image.save(path, "JPEG", quality=90)
    return path


def make_aggregate(photo_paths: list[Path]) -> CheckUpAggregate:
    """Sicurezza/Meccanica check-up using three photo files.

    Sicurezza: one OK item with one photo, one NOK item without photos.
    Meccanica: one critical NOK item with two photos.
    """
    first, second, third = (str(p) for p in photo_paths)
    taken = datetime(2025, 10, 22, 9, 15, 0)

    sicurezza = Section(
        title="Sicurezza",
        items=[
            CheckItem(
                id="sic-1",
                item_code="SIC-01",
                title="Pulsante emergenza",
                status=CheckItemStatus.OK,
                criticality=CriticalityLevel.ROUTINE,
                notes="Funzionante",
                photos=[PhotoRef(file_path=first, caption="Pannello frontale", taken_at=taken)],
            ),
            CheckItem(
                id="sic-2",
                item_code="SIC-02",
                title="Barriere fotoelettriche",
                status=CheckItemStatus.NOK,
                criticality=CriticalityLevel.IMPORTANT,
                notes="Allineamento da verificare",
            ),
        ],
    )
    meccanica = Section(
        title="Meccanica",
        items=[
            CheckItem(
                id="mec-1",
                item_code="MEC-01",
                title="Controllo cinghia",
                status=CheckItemStatus.NOK,
                criticality=CriticalityLevel.CRITICAL,
                notes="Usura evidente sul lato destro della cinghia di trasmissione",
                photos=[
                    PhotoRef(file_path=second, caption="Usura lato destro", taken_at=taken),
                    PhotoRef(file_path=third, caption="", taken_at=taken),
                ],
            ),
        ],
    )

    return CheckUpAggregate(
        id="checkup-001",
        header=CheckUpHeader(
            client=ClientInfo(company_name="Acme Robotica S.r.l.", contact_person="Mario Rossi", site="Brescia"),
            technician=TechnicianInfo(name="Luca Bianchi", company="QService"),
            island=IslandInfo(island_type="POLY Move", serial_number="PM-2024-001", operating_hours=12500),
            started_at=datetime(2025, 10, 22, 8, 0),
            completed_at=datetime(2025, 10, 22, 12, 45),
        ),
        sections=[sicurezza, meccanica],
        spare_parts=[
            SparePart(
                part_number="BLT-100",
                description="Cinghia di trasmissione",
                quantity=1,
                urgency=SparePartUrgency.CRITICAL,
                estimated_cost=85.5,
            ),
            SparePart(
                part_number="FLT-020",
                description="Filtro aria",
                quantity=2,
                urgency=SparePartUrgency.ROUTINE,
            ),
        ],
    )


@pytest.fixture
def photo_dir(tmp_path):
    """Create a temporary directory for source photos."""
    directory = tmp_path / "photos"
    directory.mkdir()
    return directory


@pytest.fixture
def output_dir(tmp_path):
    """Create a temporary output directory."""
    out_dir = tmp_path / "output"
    out_dir.mkdir()
    return out_dir


@pytest.fixture
def large_jpeg(photo_dir):
    """1600x1200 landscape photo."""
    return make_jpeg(photo_dir / "large.jpg", size=(1600, 1200))


@pytest.fixture
def small_jpeg(photo_dir):
    """400x300 photo, narrower than the default max width."""
    return make_jpeg(photo_dir / "small.jpg", size=(400, 300))


@pytest.fixture
def rotated_jpeg(photo_dir):
    """Stored 1200x800 with EXIF orientation 6 (displayed 800x1200)."""
    return make_jpeg(photo_dir / "rotated.jpg", size=(1200, 800), orientation=6)


@pytest.fixture
def photo_files(photo_dir):
    """Three source photos for the sample check-up."""
    return [
        make_jpeg(photo_dir / "IMG_0001.jpg", size=(1600, 1200), color=(200, 30, 30)),
        make_jpeg(photo_dir / "IMG_0002.jpg", size=(1200, 900), color=(30, 200, 30)),
        make_jpeg(photo_dir / "IMG_0003.jpg", size=(640, 480), color=(30, 30, 200)),
    ]


@pytest.fixture
def aggregate(photo_files):
    """Sicurezza/Meccanica check-up with three existing photos."""
    return make_aggregate(photo_files)


@pytest.fixture
def aggregate_with_missing_photo(photo_files, photo_dir):
    """Same check-up, with the second Meccanica photo missing on disk."""
    return make_aggregate([photo_files[0], photo_files[1], photo_dir / "missing.jpg"])
