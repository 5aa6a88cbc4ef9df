import base64
import io
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from models.common_models import Dimensions, ImagePreview
from services.errors import ImageProcessingFailed

THUMBNAIL_BOX = (200, 200)
THUMBNAIL_QUALITY = 80
COMPRESSED_BOX = (800, 800)
COMPRESSED_QUALITY = 85

CELL_THUMBNAIL_BOX = (100, 100)
CELL_THUMBNAIL_QUALITY = 80


def _open(content: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageProcessingFailed(str(exc) or exc.__class__.__name__) from exc
    return img


def _to_jpeg(img: Image.Image, quality: int) -> bytes:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        # JPEG has no alpha; flatten onto white.
        rgba = img.convert("RGBA")
        img = Image.new("RGB", rgba.size, (255, 255, 255))
        img.paste(rgba, mask=rgba.getchannel("A"))
    elif img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def fit_inside(img: Image.Image, box: Tuple[int, int], quality: int) -> bytes:
    """Shrink to fit within box keeping aspect ratio (never upscales) and encode as JPEG."""
    copy = img.copy()
    copy.thumbnail(box, Image.Resampling.LANCZOS)
    return _to_jpeg(copy, quality)


def fit_cover(img: Image.Image, box: Tuple[int, int], quality: int) -> bytes:
    """Scale and centre-crop to exactly fill box, then encode as JPEG."""
    return _to_jpeg(ImageOps.fit(img, box, Image.Resampling.LANCZOS), quality)


def process_image(content: bytes) -> ImagePreview:
    """Build thumbnail + compressed preview for an uploaded image."""
    img = _open(content)
    width, height = img.size
    fmt = (img.format or "unknown").lower()
    try:
        thumbnail = fit_inside(img, THUMBNAIL_BOX, THUMBNAIL_QUALITY)
        compressed = fit_inside(img, COMPRESSED_BOX, COMPRESSED_QUALITY)
    except (OSError, ValueError) as exc:
        raise ImageProcessingFailed(str(exc)) from exc
    finally:
        img.close()

    return ImagePreview(
        thumbnail=base64.b64encode(thumbnail).decode("ascii"),
        compressed=base64.b64encode(compressed).decode("ascii"),
        dimensions=Dimensions(width=width, height=height),
        format=fmt,
        size=len(content),
    )


def cell_thumbnail(content: bytes) -> bytes:
    """Square 100x100 JPEG thumbnail for an image referenced from a table cell."""
    img = _open(content)
    try:
        return fit_cover(img, CELL_THUMBNAIL_BOX, CELL_THUMBNAIL_QUALITY)
    except (OSError, ValueError) as exc:
        raise ImageProcessingFailed(str(exc)) from exc
    finally:
        img.close()
