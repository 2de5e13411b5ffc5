"""Screenshot post-processing for the HTTP layer.

Every backend hands back PNG bytes; clients usually want something smaller.
"""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError

from mobilectl.models import DeviceError

MEDIA_TYPES = {"png": "image/png", "jpeg": "image/jpeg"}


def _decode(raw: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise DeviceError(
            f"Device returned an unreadable screenshot ({len(raw)} bytes): {e}",
            tool="screenshot",
        ) from e
    return img


def process_screenshot(
    raw_png: bytes,
    format: str = "png",
    scale: float = 0.5,
    quality: int = 85,
) -> tuple[bytes, str]:
    """Downscale a device screenshot and re-encode it.

    ``format`` is "png" or "jpeg" ("jpg" is accepted too). Each side is
    scaled by ``scale`` but never drops below one pixel. ``quality`` only
    applies to JPEG. Returns ``(bytes, media_type)``.

    Raises DeviceError when the device bytes are not a decodable image.
    """
    fmt = "jpeg" if format.lower() in ("jpeg", "jpg") else "png"
    img = _decode(raw_png)

    if scale != 1.0:
        size = (max(1, int(img.width * scale)), max(1, int(img.height * scale)))
        img = img.resize(size, Image.LANCZOS)

    out = io.BytesIO()
    if fmt == "jpeg":
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.save(out, format="JPEG", quality=quality)
    else:
        img.save(out, format="PNG")
    return out.getvalue(), MEDIA_TYPES[fmt]
