from io import BytesIO

import numpy as np
from PIL import Image, UnidentifiedImageError

from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.exceptions import (
    DecodeFailureError,
    EncodeFailureError,
    UnsupportedMediaTypeError,
)


CANONICAL_SIZE = 512
BRIGHTNESS = 15
CONTRAST = 10
JPEG_QUALITY = 90


def contrast_factor(contrast: float) -> float:
    return (259 * (contrast + 255)) / (255 * (259 - contrast))


def adjust_brightness_contrast(pixels: np.ndarray, brightness: float = BRIGHTNESS, contrast: float = CONTRAST) -> np.ndarray:
    """Apply ``factor * (in - 128) + 128 + brightness`` to the R, G, B channels.

    pixels: HxWx3 or HxWx4 uint8 array. The alpha channel, if present, is copied
    unchanged. Each channel is rounded and clamped to [0, 255] on its own.
    """
    factor = contrast_factor(contrast)
    out = pixels.copy()
    rgb = pixels[..., :3].astype(np.float64)
    adjusted = factor * (rgb - 128.0) + 128.0 + brightness
    out[..., :3] = np.clip(np.rint(adjusted), 0, 255).astype(np.uint8)
    return out


class ImageNormalizer:
    """Resample an image to a fixed square and correct brightness/contrast.

    The aspect ratio is not preserved: every output is ``size`` x ``size`` so
    the scoring service always receives the same shape. Output is JPEG.
    """

    def __init__(
        self,
        size: int = CANONICAL_SIZE,
        brightness: int = BRIGHTNESS,
        contrast: int = CONTRAST,
        jpeg_quality: int = JPEG_QUALITY,
    ):
        self.size = size
        self.brightness = brightness
        self.contrast = contrast
        self.jpeg_quality = jpeg_quality

    def normalize(self, image: ImageFile) -> ImageFile:
        if not image.is_raster:
            raise UnsupportedMediaTypeError(f"Unsupported media type: {image.media_type}")

        decoded = self._decode(image)
        resized = decoded.resize((self.size, self.size), resample=Image.Resampling.BICUBIC)
        pixels = adjust_brightness_contrast(np.asarray(resized), self.brightness, self.contrast)
        data = self._encode(Image.fromarray(pixels))
        return ImageFile(
            data=data,
            media_type="image/jpeg",
            filename=image.filename,
            width=self.size,
            height=self.size,
        )

    def _decode(self, image: ImageFile) -> Image.Image:
        try:
            with Image.open(BytesIO(image.data)) as img:
                img.load()
                width, height = img.size
                mode = "RGBA" if _has_alpha(img) else "RGB"
                decoded = img.convert(mode)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
            raise DecodeFailureError(f"Could not decode {image.filename}: {e}")
        if width == 0 or height == 0:
            raise DecodeFailureError(f"Image {image.filename} has no pixels")
        return decoded

    def _encode(self, img: Image.Image) -> bytes:
        buf = BytesIO()
        try:
            img.convert("RGB").save(buf, format="JPEG", quality=self.jpeg_quality)
        except (OSError, ValueError) as e:
            raise EncodeFailureError(f"Could not encode normalized image: {e}")
        return buf.getvalue()


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)
