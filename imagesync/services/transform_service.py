"""Transform pipeline: size-bounded, iterative image resizing and re-encoding.

Small files pass through untouched. Larger files are resized to fit the
configured box (never upscaled) and re-encoded, with JPEG/PNG switched to WebP
when that is materially smaller. If the result still exceeds the size ceiling,
dimensions and quality are tightened and the encode retried until the ceiling
is met or the attempt budget runs out. Results that are not meaningfully
smaller than the input are discarded in favour of the original bytes, and any
decode/encode failure or timeout falls back to the original bytes as well.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from PIL import Image, ImageOps

from imagesync.config import MIB
from imagesync.exceptions import TransformError

if TYPE_CHECKING:
    from imagesync.config import Settings

logger = logging.getLogger(__name__)

# (upper bound of input size in bytes, dimension scale, quality reduction)
SIZE_TIERS: tuple[tuple[int | None, float, int], ...] = (
    (5 * MIB, 1.0, 0),
    (10 * MIB, 0.75, 10),
    (None, 0.5, 20),
)

_PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}
# Formats decoded and re-encoded; everything else (GIF animations, SVG, HEIC...) passes through.
TRANSFORMABLE_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/webp", "image/bmp", "image/tiff"}
)
WEBP_ELIGIBLE_TYPES = frozenset({"image/jpeg", "image/png", "image/bmp", "image/tiff"})


@dataclass(frozen=True)
class TransformPolicy:
    """Image policy handed to the pipeline and reconciler at construction."""

    max_width: int = 2048
    max_height: int = 2048
    quality: int = 85
    max_image_size: int = 10 * MIB
    small_file_threshold: int = 2 * MIB
    target_size_ceiling: int = 1 * MIB
    max_attempts: int = 3
    min_size_reduction: float = 0.05
    quality_floor: int = 40
    quality_step: int = 10
    dimension_step: float = 0.8
    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> TransformPolicy:
        return cls(
            max_width=settings.max_image_width,
            max_height=settings.max_image_height,
            quality=settings.image_quality,
            max_image_size=settings.max_image_size,
            small_file_threshold=settings.small_file_threshold,
            target_size_ceiling=settings.target_size_ceiling,
            max_attempts=settings.max_transform_attempts,
            min_size_reduction=settings.min_size_reduction,
            quality_floor=settings.quality_floor,
            quality_step=settings.quality_step,
            dimension_step=settings.dimension_step,
            timeout_seconds=settings.transform_timeout_seconds,
        )


@dataclass(frozen=True)
class EncodeParams:
    max_width: int
    max_height: int
    quality: int

    def tighten(self, policy: TransformPolicy) -> EncodeParams:
        """Shrink the box by dimension_step and lower quality by quality_step (bounded)."""
        return replace(
            self,
            max_width=max(1, int(self.max_width * policy.dimension_step)),
            max_height=max(1, int(self.max_height * policy.dimension_step)),
            quality=max(policy.quality_floor, self.quality - policy.quality_step),
        )


@dataclass
class TransformResult:
    data: bytes
    mime_type: str
    original_size: int
    attempts: int = 0
    transformed: bool = False
    fell_back: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


def initial_params(size: int, policy: TransformPolicy) -> EncodeParams:
    """Pick the starting box and quality for an input of `size` bytes."""
    for upper, scale, quality_cut in SIZE_TIERS:
        if upper is None or size <= upper:
            return EncodeParams(
                max_width=max(1, int(policy.max_width * scale)),
                max_height=max(1, int(policy.max_height * scale)),
                quality=max(policy.quality_floor, policy.quality - quality_cut),
            )
    raise AssertionError("unreachable: last tier is unbounded")


def _normalize_mime(mime_type: str) -> str:
    mime = mime_type.split(";", 1)[0].strip().lower()
    return "image/jpeg" if mime == "image/jpg" else mime


def _save(img: Image.Image, fmt: str, quality: int) -> bytes:
    buffer = io.BytesIO()
    if fmt == "JPEG":
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(buffer, format="JPEG", quality=quality, optimize=True, progressive=True)
    elif fmt == "PNG":
        img.save(buffer, format="PNG", optimize=True)
    else:
        if img.mode not in ("RGB", "RGBA", "L", "LA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        img.save(buffer, format="WEBP", quality=quality, method=4)
    return buffer.getvalue()


def _encode(
    img: Image.Image, mime_type: str, params: EncodeParams, policy: TransformPolicy
) -> tuple[bytes, str]:
    """Resize into the box and encode, preferring WebP when materially smaller."""
    resized = img.copy()
    resized.thumbnail((params.max_width, params.max_height), Image.Resampling.LANCZOS)

    native_fmt = _PIL_FORMATS.get(mime_type, "PNG")
    native_mime = mime_type if mime_type in _PIL_FORMATS else "image/png"
    best = (_save(resized, native_fmt, params.quality), native_mime)

    if mime_type in WEBP_ELIGIBLE_TYPES:
        webp = _save(resized, "WEBP", params.quality)
        if len(webp) <= len(best[0]) * (1 - policy.min_size_reduction):
            best = (webp, "image/webp")
    return best


def transform_bytes(data: bytes, mime_type: str, policy: TransformPolicy) -> TransformResult:
    """Synchronous pipeline body. Raises TransformError on decode/encode failure."""
    mime = _normalize_mime(mime_type)
    original = TransformResult(data=data, mime_type=mime_type, original_size=len(data))

    if len(data) <= policy.small_file_threshold or mime not in TRANSFORMABLE_TYPES:
        return original

    try:
        with Image.open(io.BytesIO(data)) as opened:
            opened.load()
            # Bake EXIF orientation into pixels; re-encoding drops EXIF.
            img = ImageOps.exif_transpose(opened) or opened.copy()

        params = initial_params(len(data), policy)
        attempts = 0
        while True:
            attempts += 1
            out, out_mime = _encode(img, mime, params, policy)
            if len(out) <= policy.target_size_ceiling:
                break
            if attempts >= policy.max_attempts:
                logger.warning(
                    "Size ceiling %d not met after %d attempts (%d -> %d bytes)",
                    policy.target_size_ceiling,
                    attempts,
                    len(data),
                    len(out),
                )
                break
            params = params.tighten(policy)
    except Exception as exc:
        # Broken codecs and plugins raise more than OSError; every one means "keep the original".
        msg = f"Image transform failed: {type(exc).__name__}: {exc}"
        raise TransformError(msg) from exc

    original.attempts = attempts
    if len(out) > len(data) * (1 - policy.min_size_reduction):
        logger.debug(
            "Transform saved too little (%d -> %d bytes); keeping original", len(data), len(out)
        )
        return original
    return TransformResult(
        data=out,
        mime_type=out_mime,
        original_size=len(data),
        attempts=attempts,
        transformed=True,
    )


class TransformPipeline:
    """Runs the pipeline off the event loop with a timeout and original-bytes fallback."""

    def __init__(self, policy: TransformPolicy) -> None:
        self.policy = policy

    async def transform(self, data: bytes, mime_type: str) -> TransformResult:
        if len(data) <= self.policy.small_file_threshold:
            return TransformResult(data=data, mime_type=mime_type, original_size=len(data))
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(transform_bytes, data, mime_type, self.policy),
                timeout=self.policy.timeout_seconds,
            )
        except (TransformError, TimeoutError) as exc:
            logger.warning(
                "Falling back to original bytes (%s): %s", mime_type, str(exc) or "timeout"
            )
            return TransformResult(
                data=data, mime_type=mime_type, original_size=len(data), fell_back=True
            )
