"""Image payload inspection and local re-encoding with Pillow."""

import io

from PIL import Image, ImageSequence, UnidentifiedImageError

from utils.exceptions import InvalidImageError

ERROR_BODY_MAX = 100

SIGNATURES = (
    (b"\xff\xd8\xff", "jpg"),
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
)


def sniff_extension(data: bytes) -> str | None:
    """Return the file extension for recognised image bytes, else None."""
    for signature, extension in SIGNATURES:
        if data.startswith(signature):
            return extension
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def ensure_image(data: bytes, content_type: str = "") -> str:
    """Reject bodies that are not images.

    Error pages served with a 200 status are common on image hosts and
    transform services: HTML documents, JSON error objects and tiny bodies
    mentioning an error are all rejected.

    Args:
        data: The payload.
        content_type: The response Content-Type, if known.

    Returns:
        The sniffed file extension.

    Raises:
        InvalidImageError: If the payload is not an image.
    """
    if not data:
        raise InvalidImageError("empty body")
    head = data[:64].lstrip().lower()
    if content_type.startswith("text/") or content_type == "application/json":
        raise InvalidImageError(f"content type {content_type}")
    if head.startswith((b"<!doctype", b"<html", b"<?xml", b"{", b"[")):
        raise InvalidImageError("markup or json body")
    if len(data) < ERROR_BODY_MAX and b"error" in data.lower():
        raise InvalidImageError("error message body")
    extension = sniff_extension(data)
    if extension is None:
        raise InvalidImageError("unrecognised image format")
    return extension


def reencode_webp(data: bytes, lossless: bool = True, quality: int = 95) -> bytes:
    """Re-encode image bytes as WebP.

    Animated images keep every frame. This is CPU bound; call it through
    ``asyncio.to_thread``.

    Raises:
        InvalidImageError: If Pillow cannot decode the input.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            output = io.BytesIO()
            if getattr(image, "is_animated", False):
                frames = [frame.copy() for frame in ImageSequence.Iterator(image)]
                frames[0].save(
                    output,
                    format="WEBP",
                    save_all=True,
                    append_images=frames[1:],
                    lossless=lossless,
                    quality=quality,
                    duration=image.info.get("duration", 100),
                    loop=image.info.get("loop", 0),
                )
            else:
                if image.mode not in ("RGB", "RGBA"):
                    image = image.convert("RGBA" if "transparency" in image.info else "RGB")
                image.save(output, format="WEBP", lossless=lossless, quality=quality, method=4)
            return output.getvalue()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise InvalidImageError(f"cannot decode image: {e}") from e
