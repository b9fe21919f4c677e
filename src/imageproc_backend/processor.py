"""
Image transform pipeline.

`run_pipeline` is the single entry point used by the worker:
bytes in -> decode -> resize -> crop -> tint -> JPEG bytes out.

Stages always run in that order, whatever order the options were written in:
crop coordinates refer to the already-resized frame, and the tint sees the final
geometry. Every function here is pure and works on an image owned by the caller.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

import numpy as np
from omegaconf import DictConfig
from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError, ImageEncodeError, InvalidColorError
from .models import CropOptions, TransformOptions

logger = logging.getLogger(__name__)

HEX_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")

RESAMPLE_FILTERS = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}

OUTPUT_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True)
class PipelineConfig:
    default_width: int = 600
    tint_intensity: float = 0.3
    jpeg_quality: int = 85
    resize_filter: str = "nearest"

    @classmethod
    def from_settings(cls, settings: DictConfig) -> "PipelineConfig":
        transform = settings.transform
        return cls(
            default_width=int(transform.default_width),
            tint_intensity=float(transform.tint_intensity),
            jpeg_quality=int(transform.jpeg_quality),
            resize_filter=str(transform.resize_filter),
        )


@dataclass
class TransformResult:
    data: bytes
    width: int
    height: int
    content_type: str = OUTPUT_CONTENT_TYPE


def decode_image(data: bytes) -> Image.Image:
    """
    Decode JPEG/PNG/GIF (or any other format Pillow reads) into an RGBA raster.

    Animated inputs contribute their first frame only.

    Raises:
        ImageDecodeError: If the payload is empty, corrupt or unsupported
    """
    if not data:
        raise ImageDecodeError("Empty image payload")
    try:
        with Image.open(BytesIO(data)) as image:
            image.seek(0)
            return image.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, EOFError) as exc:
        raise ImageDecodeError(f"Could not decode image: {exc}") from exc


@dataclass
class ImageInfo:
    width: int
    height: int
    format: str
    content_type: str

    @property
    def extension(self) -> str:
        return {"JPEG": ".jpg", "TIFF": ".tif"}.get(self.format, f".{self.format.lower()}")


def probe_image(data: bytes) -> ImageInfo:
    """
    Read dimensions and format of an upload, decoding it once to reject
    truncated or corrupt payloads up front.

    Raises:
        ImageDecodeError: If the payload is not a readable image
    """
    if not data:
        raise ImageDecodeError("Empty image payload")
    try:
        with Image.open(BytesIO(data)) as image:
            fmt = image.format or ""
            image.load()
            return ImageInfo(
                width=image.width,
                height=image.height,
                format=fmt,
                content_type=Image.MIME.get(fmt, "application/octet-stream"),
            )
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, EOFError) as exc:
        raise ImageDecodeError(f"Could not read image: {exc}") from exc


def compute_resize_dims(width: int, height: int, target_width: int) -> Tuple[int, int]:
    """Preserve aspect ratio: new height = round(target * height / width), at least 1."""
    new_height = int(target_width * height / width + 0.5)
    return target_width, max(1, new_height)


def resize_image(image: Image.Image, width: int, default_width: int = 600, resize_filter: str = "nearest") -> Image.Image:
    if width <= 0:
        width = default_width
    size = compute_resize_dims(image.width, image.height, width)
    if size == image.size:
        return image
    return image.resize(size, RESAMPLE_FILTERS[resize_filter])


def clamp_crop_box(image_size: Tuple[int, int], crop: CropOptions) -> Optional[Tuple[int, int, int, int]]:
    """
    Clamp a crop rectangle to the raster and return it as a PIL box.

    Returns None when the rectangle is degenerate or lies entirely outside the
    image, in which case the crop stage is skipped.
    """
    if crop.width <= 0 or crop.height <= 0:
        return None
    image_width, image_height = image_size
    x = max(crop.x, 0)
    y = max(crop.y, 0)
    width = min(crop.width, image_width - x)
    height = min(crop.height, image_height - y)
    if width <= 0 or height <= 0:
        return None
    return x, y, x + width, y + height


def crop_image(image: Image.Image, crop: CropOptions) -> Image.Image:
    box = clamp_crop_box(image.size, crop)
    if box is None:
        return image
    return image.crop(box)


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    """
    Parse a ``#RRGGBB`` string.

    Raises:
        InvalidColorError: For any other length, a missing ``#`` or non-hex digits
    """
    if not isinstance(value, str) or not HEX_COLOR_PATTERN.match(value):
        raise InvalidColorError(f"Invalid hex color format: {value!r}")
    return int(value[1:3], 16), int(value[3:5], 16), int(value[5:7], 16)


def tint_image(image: Image.Image, color: Tuple[int, int, int], intensity: float = 0.3) -> Image.Image:
    """
    Blend every pixel toward ``color``: out = orig * (1 - intensity) + tint * intensity.

    Blending happens in normalized [0, 1] space per R/G/B channel; alpha is
    copied through untouched.
    """
    pixels = np.asarray(image.convert("RGBA"))
    rgb = pixels[..., :3].astype(np.float32) / 255.0
    tint = np.asarray(color, dtype=np.float32) / 255.0
    blended = rgb * (1.0 - intensity) + tint * intensity

    out = pixels.copy()
    out[..., :3] = np.clip(np.rint(blended * 255.0), 0, 255).astype(np.uint8)
    return Image.fromarray(out)


def encode_jpeg(image: Image.Image, quality: int = 85) -> bytes:
    """
    Encode as baseline JPEG. JPEG has no alpha channel, so it is dropped.

    Raises:
        ImageEncodeError: If Pillow fails to encode the raster
    """
    buffer = BytesIO()
    try:
        image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise ImageEncodeError(f"Could not encode JPEG: {exc}") from exc
    return buffer.getvalue()


def apply_transforms(image: Image.Image, options: TransformOptions, config: PipelineConfig) -> Image.Image:
    """Apply resize -> crop -> tint to a decoded raster."""
    if options.resize is not None:
        image = resize_image(image, options.resize.width, config.default_width, config.resize_filter)
        logger.info("Applied resize: %dx%d", image.width, image.height)

    if options.crop is not None:
        cropped = crop_image(image, options.crop)
        if cropped is image:
            logger.info("Skipped crop: rectangle %s is empty within %dx%d", options.crop.model_dump(), image.width, image.height)
        else:
            logger.info("Applied crop: %dx%d", cropped.width, cropped.height)
        image = cropped

    if options.tint is not None:
        try:
            color = parse_hex_color(options.tint)
        except InvalidColorError:
            logger.warning("Skipped tint: invalid color %r", options.tint)
        else:
            image = tint_image(image, color, config.tint_intensity)
            logger.info("Applied tint: %s", options.tint)

    return image


def run_pipeline(data: bytes, options: TransformOptions, config: Optional[PipelineConfig] = None) -> TransformResult:
    """
    Full pipeline from source bytes to processed JPEG bytes.

    Raises:
        ImageDecodeError: When the source cannot be decoded
        ImageEncodeError: When the result cannot be encoded
    """
    config = config or PipelineConfig()
    image = decode_image(data)
    image = apply_transforms(image, options, config)
    encoded = encode_jpeg(image, config.jpeg_quality)
    return TransformResult(data=encoded, width=image.width, height=image.height)
