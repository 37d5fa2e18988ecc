"""Tests for the storage budget stage."""

from unittest.mock import MagicMock

import pytest

from qreport.models import CompressionPolicy, Err, ExportErrorCode, ExportFormat, ExportOptions, Ok
from qreport.pipeline.stage_budget import StorageBudgeter, bytes_per_pixel


@pytest.fixture
def budgeter():
    """Budgeter with round constants and no real disk access."""
    return StorageBudgeter(
        safety_factor=2.0,
        base_overhead_bytes=1000,
        row_overhead_bytes=10,
        fallback_photo_bytes=5000,
        free_space_fn=MagicMock(return_value=10**12),
    )


class TestEstimate:
    """Tests for output size estimation."""

    def test_no_formats_is_zero(self, budgeter, aggregate):
        """Nothing selected, nothing to write."""
        assert budgeter.estimate(aggregate, ExportOptions(formats=frozenset())) == 0

    def test_text_only(self, budgeter, aggregate):
        """Text needs the base overhead plus one row per section, item and spare part."""
        options = ExportOptions(formats=frozenset({ExportFormat.TEXT}))
        # 2 sections + 3 items + 2 spare parts
        assert budgeter.estimate(aggregate, options) == 1000 + 7 * 10

    def test_document_photos_use_policy(self, budgeter, aggregate):
        """Embedded photos are estimated from max width and quality."""
        options = ExportOptions(
            formats=frozenset({ExportFormat.DOCUMENT}),
            compression=CompressionPolicy(quality=85, max_width=800),
        )
        per_photo = int(800 * 600 * bytes_per_pixel(85))
        assert budgeter.estimate(aggregate, options) == 1000 + 3 * per_photo + 70

    def test_document_without_photos(self, budgeter, aggregate):
        """include_photos=False leaves photos out of the estimate."""
        options = ExportOptions(formats=frozenset({ExportFormat.DOCUMENT}), include_photos=False)
        assert budgeter.estimate(aggregate, options) == 1070

    def test_folder_uses_file_sizes(self, budgeter, aggregate, photo_files):
        """Folder photos count with their size on disk."""
        options = ExportOptions(formats=frozenset({ExportFormat.PHOTO_FOLDER}))
        on_disk = sum(p.stat().st_size for p in photo_files)
        assert budgeter.estimate(aggregate, options) == 1000 + on_disk

    def test_folder_without_photos(self, budgeter, aggregate):
        """No photo folder is written without photos, so nothing is reserved for it."""
        options = ExportOptions(formats=frozenset({ExportFormat.PHOTO_FOLDER}), include_photos=False)
        assert budgeter.estimate(aggregate, options) == 1000

    def test_folder_fallback_for_missing_photo(self, budgeter, aggregate_with_missing_photo, photo_files):
        """A photo that cannot be stat'ed counts with the fallback size."""
        options = ExportOptions(formats=frozenset({ExportFormat.PHOTO_FOLDER}))
        on_disk = photo_files[0].stat().st_size + photo_files[1].stat().st_size
        assert budgeter.estimate(aggregate_with_missing_photo, options) == 1000 + on_disk + 5000

    def test_quality_density(self):
        """Higher quality costs more bytes per pixel."""
        assert bytes_per_pixel(100) > bytes_per_pixel(85) > bytes_per_pixel(60) > bytes_per_pixel(30)


class TestCheckAvailable:
    """Tests for the free space gate."""

    def test_accepts_exactly_twice_the_estimate(self, tmp_path):
        """Free space equal to 2x the estimate passes."""
        budgeter = StorageBudgeter(free_space_fn=MagicMock(return_value=20_000))
        result = budgeter.check_available(tmp_path, 10_000)

        assert isinstance(result, Ok)
        assert result.value == 20_000

    def test_rejects_one_byte_short(self, tmp_path):
        """One byte below 2x the estimate fails."""
        budgeter = StorageBudgeter(free_space_fn=MagicMock(return_value=19_999))
        result = budgeter.check_available(tmp_path, 10_000)

        assert isinstance(result, Err)
        assert result.error.code == ExportErrorCode.INSUFFICIENT_STORAGE
        assert result.error.resource == str(tmp_path)

    def test_safety_factor_never_below_two(self):
        """A smaller configured factor is raised to 2."""
        assert StorageBudgeter(safety_factor=1.2).safety_factor == 2.0

    def test_missing_target_uses_existing_ancestor(self, tmp_path):
        """A target directory that does not exist yet is checked on its parent volume."""
        result = StorageBudgeter().check_available(tmp_path / "not" / "yet", 1)
        assert isinstance(result, Ok)
