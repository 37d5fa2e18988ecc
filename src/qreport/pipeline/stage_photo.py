"""Photo Processing Stage - Decode, orient, resize and re-encode photos.

Uses Pillow. Large JPEG sources are decoded in draft mode so that a 4000 px
camera shot never lands in memory at full resolution when the document only
needs 800 px. Nothing is written to disk here.
"""

import io
import logging
import math
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from PIL import Image, ImageDraw, ImageFont, ImageOps

from qreport.config import settings
from qreport.models import (
    CompressionPolicy,
    Err,
    ExportError,
    ExportErrorCode,
    ExportStage,
    Ok,
    PhotoRef,
    ProcessedPhoto,
    Result,
)

from .cancellation import CancellationToken, checkpoint

logger = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 0x0112
# Orientations 5-8 swap width and height once applied
TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}

MAX_WORKERS_LIMIT = 4


def watermark_font_size(image_width: int) -> int:
    """Font size proportional to the photo width."""
    if image_width < 600:
        return 24
    if image_width < 1200:
        return 36
    if image_width < 2000:
        return 48
    return 64


def target_size(width: int, height: int, max_width: int) -> tuple[int, int]:
    """Output size for a ``width`` x ``height`` photo, never upscaled."""
    if width <= max_width:
        return width, height
    return max_width, max(1, round(max_width * height / width))


def _photo_error(code: ExportErrorCode, message: str, source: Path) -> Err:
    return Err(
        ExportError(
            code=code,
            message=message,
            stage=ExportStage.PROCESSING,
            resource=str(source),
        )
    )


class PhotoProcessor:
    """Turns a photo file into a compressed JPEG ready to embed.

    Failures are returned as ``Err`` values: a missing or corrupt photo
    must not abort the surrounding export.
    """

    def __init__(self, default_policy: Optional[CompressionPolicy] = None, watermark_margin: int = None):
        """Initialize processor.

        Args:
            default_policy: Policy used when ``process`` gets none
                (default built from settings)
            watermark_margin: Distance of the watermark from the bottom-right
                corner in pixels (default from settings)
        """
        self.default_policy = default_policy or CompressionPolicy(
            quality=settings.photo_quality,
            max_width=settings.photo_max_width,
        )
        self.watermark_margin = (
            settings.watermark_margin if watermark_margin is None else watermark_margin
        )

    def process(
        self,
        source_path: Union[str, Path],
        policy: Optional[CompressionPolicy] = None,
        *,
        taken_at: Optional[datetime] = None,
    ) -> Result[ProcessedPhoto]:
        """Process one photo.

        Args:
            source_path: Photo file on disk
            policy: Compression policy (default: the processor's)
            taken_at: Capture time, stamped in the watermark when enabled

        Returns:
            Ok(ProcessedPhoto) or Err with PHOTO_NOT_FOUND / IMAGE_DECODE_FAILED
        """
        policy = policy or self.default_policy
        source = Path(source_path)

        if not source.is_file():
            return _photo_error(ExportErrorCode.PHOTO_NOT_FOUND, "Photo file not found", source)

        try:
            with Image.open(source) as image:
                processed = self._transform(image, policy, taken_at)
        except FileNotFoundError:
            return _photo_error(ExportErrorCode.PHOTO_NOT_FOUND, "Photo file not found", source)
        except PermissionError:
            return _photo_error(ExportErrorCode.PHOTO_NOT_FOUND, "Photo file is not readable", source)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            return _photo_error(
                ExportErrorCode.IMAGE_DECODE_FAILED, f"Cannot decode image: {e}", source
            )

        logger.debug(
            "Processed %s -> %dx%d (%d bytes)",
            source.name,
            processed.width,
            processed.height,
            processed.size_bytes,
        )
        return Ok(processed)

    def _transform(
        self,
        image: Image.Image,
        policy: CompressionPolicy,
        taken_at: Optional[datetime],
    ) -> ProcessedPhoto:
        orientation = image.getexif().get(EXIF_ORIENTATION_TAG, 1)
        stored_width, stored_height = image.size
        if orientation in TRANSPOSED_ORIENTATIONS:
            width, height = stored_height, stored_width
        else:
            width, height = stored_width, stored_height

        out_width, out_height = target_size(width, height, policy.max_width)

        # Sub-sampled decode keeps at least the target size
        if image.format == "JPEG" and width >= 2 * policy.max_width:
            scale = policy.max_width / width
            image.draft(
                "RGB",
                (math.ceil(stored_width * scale), math.ceil(stored_height * scale)),
            )

        image = ImageOps.exif_transpose(image)
        if image.size != (out_width, out_height):
            image = image.resize((out_width, out_height), Image.Resampling.LANCZOS)

        if policy.watermark:
            image = self._apply_watermark(image, policy, taken_at)

        if image.mode != "RGB":
            image = image.convert("RGB")

        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=policy.quality, optimize=True)
        return ProcessedPhoto(data=buffer.getvalue(), width=out_width, height=out_height)

    def _apply_watermark(
        self,
        image: Image.Image,
        policy: CompressionPolicy,
        taken_at: Optional[datetime],
    ) -> Image.Image:
        """Stamp semi-transparent white text with a shadow at bottom-right."""
        text = policy.watermark_text
        if policy.watermark_timestamp and taken_at is not None:
            text = f"{text} - {taken_at:%d/%m/%Y %H:%M}"

        base = image.convert("RGBA")
        overlay = Image.new("RGBA", base.size, (255, 255, 255, 0))
        draw = ImageDraw.Draw(overlay)
        font = ImageFont.load_default(size=watermark_font_size(base.width))

        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        x = base.width - (right - left) - self.watermark_margin
        y = base.height - (bottom - top) - self.watermark_margin

        draw.text((x + 2, y + 2), text, font=font, fill=(0, 0, 0, 128))
        draw.text((x, y), text, font=font, fill=(255, 255, 255, 200))
        return Image.alpha_composite(base, overlay)


def iter_processed(
    processor: PhotoProcessor,
    photos: Iterable[PhotoRef],
    policy: Optional[CompressionPolicy] = None,
    max_workers: int = None,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[tuple[PhotoRef, Result[ProcessedPhoto]]]:
    """Process photos on a bounded thread pool, yielding in source order.

    At most ``max_workers`` results are in flight at any time, so memory
    stays bounded however many photos the check-up holds.

    Args:
        processor: Processor doing the work
        photos: Photos in source order
        policy: Compression policy for every photo
        max_workers: Pool size, clamped to 1-4 (default from settings)
        cancel: Token checked between photos

    Yields:
        (photo, result) pairs in the order of ``photos``

    Raises:
        ExportCancelled: The token was cancelled.
    """
    workers = max(1, min(MAX_WORKERS_LIMIT, max_workers or settings.max_photo_workers))
    window: deque = deque()

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="qreport-photo") as pool:
        try:
            for photo in photos:
                checkpoint(cancel, "photo")
                future = pool.submit(processor.process, photo.file_path, policy, taken_at=photo.taken_at)
                window.append((photo, future))
                if len(window) >= workers:
                    done, future = window.popleft()
                    yield done, future.result()

            while window:
                checkpoint(cancel, "photo")
                done, future = window.popleft()
                yield done, future.result()
        finally:
            for _, future in window:
                future.cancel()
