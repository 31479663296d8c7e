from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.entities.score_entity import ScoreResult
from damage_pipeline.domain.exceptions import ErrorKind, ItemProcessingError


class PipelineStage(str, Enum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    ANALYZING = "analyzing"


class ItemStatus(str, Enum):
    PENDING = "pending"
    SCORED = "scored"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemError:
    """Failure recorded on a single batch item."""
    kind: ErrorKind
    message: str
    status: Optional[int] = None

    @classmethod
    def from_exception(cls, exc: ItemProcessingError) -> "ItemError":
        return cls(kind=exc.kind, message=exc.message, status=exc.status)


@dataclass(frozen=True)
class BatchItem:
    """One image of a batch, addressed by its position.

    Items are never mutated: each transition builds a new item with the
    ``with_*`` helpers so snapshots handed to readers stay consistent.
    """
    index: int
    source_image: ImageFile
    normalized_image: Optional[ImageFile] = None
    result: Optional[ScoreResult] = None
    error: Optional[ItemError] = None

    @property
    def status(self) -> ItemStatus:
        if self.result is not None:
            return ItemStatus.SCORED
        if self.error is not None:
            return ItemStatus.FAILED
        return ItemStatus.PENDING

    @property
    def scoring_input(self) -> ImageFile:
        # Fall back to the original when normalization was skipped or failed.
        return self.normalized_image if self.normalized_image is not None else self.source_image

    def with_normalized(self, image: ImageFile) -> "BatchItem":
        return replace(self, normalized_image=image, result=None, error=None)

    def with_normalization_error(self, error: ItemError) -> "BatchItem":
        return replace(self, normalized_image=None, result=None, error=error)

    def with_result(self, result: ScoreResult) -> "BatchItem":
        return replace(self, result=result, error=None)

    def with_scoring_error(self, error: ItemError) -> "BatchItem":
        return replace(self, result=None, error=error)


@dataclass(frozen=True)
class PipelineState:
    """Read-only snapshot of the pipeline for one batch."""
    stage: PipelineStage = PipelineStage.IDLE
    progress: int = 0
    items: Tuple[BatchItem, ...] = ()
    overall_result: Optional[ScoreResult] = None

    @property
    def is_idle(self) -> bool:
        return self.stage == PipelineStage.IDLE

    def replace_item(self, item: BatchItem, progress: int) -> "PipelineState":
        items = self.items[:item.index] + (item,) + self.items[item.index + 1:]
        return replace(self, items=items, progress=progress)
