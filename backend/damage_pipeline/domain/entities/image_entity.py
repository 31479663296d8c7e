from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError


@dataclass(frozen=True)
class ImageFile:
    """An uploaded image: raw bytes plus the metadata declared on upload.

    - data: encoded bytes as received (JPEG, PNG, ...)
    - media_type: declared MIME type, e.g. 'image/png'
    - filename: original file name, used only for labelling
    - width/height: probed from the header, None when it cannot be read
    """
    data: bytes
    media_type: str
    filename: str = "image"
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def is_raster(self) -> bool:
        return is_raster_media_type(self.media_type)

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str, filename: str = "image") -> "ImageFile":
        width, height = probe_size(data)
        return cls(data=data, media_type=media_type, filename=filename, width=width, height=height)


def is_raster_media_type(media_type: Optional[str]) -> bool:
    if not media_type:
        return False
    mt = media_type.split(";", 1)[0].strip().lower()
    return mt.startswith("image/") and mt != "image/svg+xml"


def probe_size(data: bytes):
    """Read (width, height) from the image header without decoding pixels."""
    try:
        with Image.open(BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError):
        return None, None
