"""Shared fixtures: in-memory images and a scripted scoring service."""

from io import BytesIO

import pytest
from PIL import Image

from damage_pipeline.core.di.service_locator import ServiceLocator
from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.entities.score_entity import ScoreResult
from damage_pipeline.domain.repositories.damage_scoring_repository import DamageScoringRepository

CORRUPT_BYTES = b"this is not an image at all"


def encode_image(color=(128, 128, 128), size=(64, 48), fmt="PNG", mode="RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def image_file(color=(128, 128, 128), size=(64, 48), filename="photo.png") -> ImageFile:
    return ImageFile.from_bytes(encode_image(color, size), media_type="image/png", filename=filename)


def corrupt_file(filename="broken.jpg") -> ImageFile:
    return ImageFile.from_bytes(CORRUPT_BYTES, media_type="image/jpeg", filename=filename)


class FakeScorer(DamageScoringRepository):
    """Scoring service stub.

    ``behavior(image, call_number)`` may return a ScoreResult or raise; by
    default every image scores (10 * call_number, 90).
    """

    def __init__(self, behavior=None):
        self.calls = []
        self._behavior = behavior

    def score(self, image: ImageFile) -> ScoreResult:
        self.calls.append(image)
        if self._behavior is not None:
            return self._behavior(image, len(self.calls))
        return ScoreResult(damage_percentage=10 * len(self.calls), confidence=90)


@pytest.fixture
def make_image():
    return image_file


@pytest.fixture
def make_corrupt():
    return corrupt_file


@pytest.fixture
def fake_scorer_cls():
    return FakeScorer


@pytest.fixture(autouse=True)
def reset_service_locator():
    ServiceLocator.reset()
    yield
    ServiceLocator.reset()
