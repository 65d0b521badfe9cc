"""Screenshot preparation for vision backends."""

import base64
import io
from pathlib import Path

from PIL import Image


def encode_image_jpeg(path: Path, max_edge: int = 1024, quality: int = 75) -> bytes:
    """Load an image, shrink it so its longest edge is at most ``max_edge``, re-encode as JPEG."""
    with Image.open(path) as img:
        img = img.convert("RGB")
        width, height = img.size
        longest = max(width, height)
        if longest > max_edge:
            scale = max_edge / longest
            new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
            img = img.resize(new_size, Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()


def image_data_uri(path: Path, max_edge: int = 1024, quality: int = 75) -> str:
    """``data:image/jpeg;base64,...`` URI for a screenshot."""
    data = base64.b64encode(encode_image_jpeg(path, max_edge, quality)).decode("utf-8")
    return f"data:image/jpeg;base64,{data}"
