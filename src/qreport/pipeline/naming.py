"""Naming Resolver - Deterministic, collision-free output file names.

Every generator of a run (document captions, text report references, photo
folder) asks the same resolver instance, so a given (section, item, photo)
photo position always maps to the same file name.

Photo name patterns:
- structured: 02_meccanica_controllo-cinghia_usura-lato-destro.jpg
- sequential: foto_001.jpg
- timestamp:  20251022_143052_001.jpg
"""

import re
import unicodedata
from datetime import datetime
from typing import Optional

from qreport.models import CheckItem, CheckUpAggregate, NamingStrategy, PhotoSlot

PHOTO_FOLDER_NAME = "FOTO"
PHOTO_EXTENSION = ".jpg"
DOCUMENT_EXTENSION = ".docx"

SECTION_SLUG_LENGTH = 20
ITEM_SLUG_LENGTH = 30
MAX_FILENAME_LENGTH = 80
FILE_COMPONENT_LENGTH = 30

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NON_ALNUM_ANY_CASE = re.compile(r"[^A-Za-z0-9]+")


def _fold_ascii(text: str) -> str:
    """Strip accents: 'Qualità' -> 'Qualita'."""
    return unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")


def normalize_component(text: str, max_length: int) -> str:
    """Lowercase slug with '-' in place of anything non-alphanumeric.

    Args:
        text: Free text (section title, item title, caption).
        max_length: Maximum slug length.

    Returns:
        Normalized slug, possibly empty.
    """
    slug = _NON_ALNUM.sub("-", _fold_ascii(text).lower()).strip("-")
    return slug[:max_length].rstrip("-")


def _file_component(text: str, fallback: str = "NA") -> str:
    """Case-preserving component for document and report file names."""
    component = _NON_ALNUM_ANY_CASE.sub("-", _fold_ascii(text)).strip("-")
    return component[:FILE_COMPONENT_LENGTH].rstrip("-") or fallback


def timestamp_label(moment: datetime) -> str:
    """yyyyMMdd_HHmm label used in output file names."""
    return moment.strftime("%Y%m%d_%H%M")


def document_file_name(
    aggregate: CheckUpAggregate,
    generated_at: datetime,
    extension: str = DOCUMENT_EXTENSION,
) -> str:
    """Checkup_{IslandType}_{ClientName}_{yyyyMMdd_HHmm}.docx"""
    island = _file_component(aggregate.header.island.island_type)
    client = _file_component(aggregate.header.client.company_name)
    return f"Checkup_{island}_{client}_{timestamp_label(generated_at)}{extension}"


def text_file_name(generated_at: datetime) -> str:
    """Checkup_Summary_{yyyyMMdd_HHmm}.txt"""
    return f"Checkup_Summary_{timestamp_label(generated_at)}.txt"


def photo_index_file_name(generated_at: datetime) -> str:
    return f"FOTO_INDICE_{timestamp_label(generated_at)}.txt"


def export_directory_name(generated_at: datetime) -> str:
    return f"Export_Checkup_{timestamp_label(generated_at)}"


class NamingResolver:
    """Resolves photo file names for one export run.

    Names are cached per (section index, item index, photo index); the first
    resolution of a position fixes its name for the rest of the run. Item ids
    play no part, so items sharing an id still get distinct names.
    """

    def __init__(self, strategy: NamingStrategy = NamingStrategy.STRUCTURED):
        self.strategy = strategy
        self._names: dict[tuple[int, int, int], str] = {}
        self._taken: set[str] = set()
        self._sequence = 0

    @classmethod
    def for_aggregate(
        cls,
        aggregate: CheckUpAggregate,
        strategy: NamingStrategy = NamingStrategy.STRUCTURED,
    ) -> "NamingResolver":
        """Build a resolver with every photo of ``aggregate`` resolved in source order.

        Pre-resolving fixes sequence numbers and collision suffixes
        independently of the order in which generators ask later.
        """
        resolver = cls(strategy)
        for slot in aggregate.iter_photo_slots():
            resolver.resolve_slot(slot)
        return resolver

    def resolve(
        self,
        section_index: int,
        section_title: str,
        item: CheckItem,
        photo_index: int,
        caption: str = "",
        *,
        item_index: int,
    ) -> str:
        """Return the file name of a photo.

        Args:
            section_index: 0-based position of the section.
            section_title: Section title, e.g. 'Meccanica'.
            item: Check item owning the photo.
            photo_index: 0-based position of the photo within the item.
            caption: Photo caption; blank captions become 'foto{n}'.
            item_index: 0-based position of the item within its section.

        Returns:
            File name of at most 80 characters, unique within this run.
        """
        key = (section_index, item_index, photo_index)
        cached = self._names.get(key)
        if cached is not None:
            return cached

        self._sequence += 1
        stem = self._stem(section_index, section_title, item, photo_index, caption)
        name = self._unique(stem)

        self._names[key] = name
        self._taken.add(name.lower())
        return name

    def resolve_slot(self, slot: PhotoSlot) -> str:
        return self.resolve(
            slot.section_index,
            slot.section.title,
            slot.item,
            slot.photo_index,
            slot.photo.caption,
            item_index=slot.item_index,
        )

    def resolved_names(self) -> list[str]:
        """All names resolved so far, in resolution order."""
        return list(self._names.values())

    def _stem(
        self,
        section_index: int,
        section_title: str,
        item: CheckItem,
        photo_index: int,
        caption: str,
    ) -> str:
        if self.strategy == NamingStrategy.SEQUENTIAL:
            return f"foto_{self._sequence:03d}"

        if self.strategy == NamingStrategy.TIMESTAMP:
            taken_at = self._taken_at(item, photo_index)
            if taken_at is None:
                return f"foto_{self._sequence:03d}"
            return f"{taken_at:%Y%m%d_%H%M%S}_{self._sequence:03d}"

        section = normalize_component(section_title, SECTION_SLUG_LENGTH) or "sezione"
        item_slug = normalize_component(item.title, ITEM_SLUG_LENGTH) or "controllo"
        caption_slug = normalize_component(caption, MAX_FILENAME_LENGTH) or f"foto{photo_index + 1}"
        return f"{section_index + 1:02d}_{section}_{item_slug}_{caption_slug}"

    @staticmethod
    def _taken_at(item: CheckItem, photo_index: int) -> Optional[datetime]:
        if 0 <= photo_index < len(item.photos):
            return item.photos[photo_index].taken_at
        return None

    def _unique(self, stem: str) -> str:
        name = _fit(stem)
        suffix_number = 2
        while name.lower() in self._taken:
            name = _fit(stem, f"_{suffix_number}")
            suffix_number += 1
        return name


def _fit(stem: str, suffix: str = "") -> str:
    """Truncate ``stem`` so that stem + suffix + extension fits the length limit."""
    limit = MAX_FILENAME_LENGTH - len(PHOTO_EXTENSION) - len(suffix)
    return stem[:limit].rstrip("-_") + suffix + PHOTO_EXTENSION
