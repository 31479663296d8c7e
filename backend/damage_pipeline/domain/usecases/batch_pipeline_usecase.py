import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Generator, List, Sequence

from damage_pipeline.core.utils.logger import get_logger
from damage_pipeline.domain.entities.batch_entity import BatchItem, ItemError, PipelineStage, PipelineState
from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.exceptions import (
    AllItemsFailedError,
    EmptyBatchError,
    InvalidInputError,
    NormalizationError,
    PipelineBusyError,
    PipelineCancelledError,
    ScoringError,
)
from damage_pipeline.domain.repositories.damage_scoring_repository import DamageScoringRepository
from damage_pipeline.domain.usecases.aggregate_results_usecase import aggregate, round_half_up
from damage_pipeline.domain.usecases.normalize_image_usecase import ImageNormalizer

_logger = get_logger("batch_pipeline")

StateListener = Callable[[PipelineState], None]


class BatchPipeline:
    """Runs a batch of images through normalization and damage scoring.

    The pipeline is a small state machine: it is IDLE between operations and
    PREPROCESSING or ANALYZING while one runs. Only one operation may run at a
    time; any other call made meanwhile fails with PipelineBusyError.

    Items are processed one at a time in index order. After each item a new
    immutable PipelineState is published, so ``snapshot()`` can be polled from
    other threads and listeners see one event per completed item.
    """

    def __init__(self, normalizer: ImageNormalizer, scorer: DamageScoringRepository, preprocess_workers: int = 1):
        self._normalizer = normalizer
        self._scorer = scorer
        self._preprocess_workers = max(1, int(preprocess_workers))
        self._state = PipelineState()
        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._cancel = threading.Event()
        self._listeners: List[StateListener] = []

    # --- observation ---

    def snapshot(self) -> PipelineState:
        with self._state_lock:
            return self._state

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def cancel(self) -> None:
        """Ask the running operation to stop before its next item."""
        self._cancel.set()

    # --- batch lifecycle ---

    def submit_batch(self, images: Sequence[ImageFile]) -> PipelineState:
        """Replace the current batch with ``images``, all items pending."""
        with self._exclusive():
            if not images:
                raise InvalidInputError("At least one image is required")
            for pos, image in enumerate(images):
                if not image.is_raster:
                    raise InvalidInputError(f"Image {pos} ({image.filename}) is not a raster image: {image.media_type}")
            items = tuple(BatchItem(index=i, source_image=img) for i, img in enumerate(images))
            state = self._set_state(PipelineState(items=items))
        _logger.info("Batch submitted with %d images", len(items))
        return state

    def clear(self) -> PipelineState:
        with self._exclusive():
            state = self._set_state(PipelineState())
        _logger.info("Batch cleared")
        return state

    # --- stages ---

    def run_preprocessing(self) -> PipelineState:
        """Normalize every item in index order.

        Items that fail keep their error and are later scored on the original
        image. Earlier scores are discarded since they refer to other inputs.
        """
        with self._exclusive():
            state = self._begin(PipelineStage.PREPROCESSING)
            total = len(state.items)
            normalized = self._normalized_items(state.items)
            try:
                for completed, item in enumerate(normalized, start=1):
                    self._publish(self.snapshot().replace_item(item, _progress(completed, total)))
                    if completed < total:
                        self._check_cancelled()
            finally:
                normalized.close()
                state = self._finish()
            failed = sum(1 for item in state.items if item.error is not None)
            _logger.info("Preprocessing finished: %d/%d normalized", total - failed, total)
            return state

    def run_analysis(self) -> PipelineState:
        """Score every item in index order and aggregate the results.

        Raises AllItemsFailedError when no item could be scored.
        """
        with self._exclusive():
            state = self._begin(PipelineStage.ANALYZING)
            total = len(state.items)
            try:
                for completed, item in enumerate(state.items, start=1):
                    self._publish(self.snapshot().replace_item(self._score(item), _progress(completed, total)))
                    if completed < total:
                        self._check_cancelled()
            except BaseException:
                self._finish()
                raise

            overall = aggregate(self.snapshot().items)
            state = self._finish(progress=100, overall_result=overall)
            if overall is None:
                _logger.error("Analysis finished with no scored items")
                raise AllItemsFailedError(state)
            _logger.info(
                "Analysis finished: damage=%d%% confidence=%d%% over %d items",
                overall.damage_percentage, overall.confidence,
                sum(1 for item in state.items if item.result is not None),
            )
            return state

    # --- per item ---

    def _normalize(self, item: BatchItem) -> BatchItem:
        try:
            return item.with_normalized(self._normalizer.normalize(item.source_image))
        except NormalizationError as e:
            _logger.warning("Normalization failed for item %d (%s): %s", item.index, e.kind.value, e)
            return item.with_normalization_error(ItemError.from_exception(e))

    def _normalized_items(self, items: Sequence[BatchItem]) -> Generator[BatchItem, None, None]:
        if self._preprocess_workers == 1 or len(items) == 1:
            for item in items:
                yield self._normalize(item)
            return
        # map() yields in submission order, so completions are applied by index.
        executor = ThreadPoolExecutor(max_workers=self._preprocess_workers, thread_name_prefix="normalize")
        try:
            yield from executor.map(self._normalize, items)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _score(self, item: BatchItem) -> BatchItem:
        try:
            return item.with_result(self._scorer.score(item.scoring_input))
        except ScoringError as e:
            _logger.warning("Scoring failed for item %d (%s): %s", item.index, e.kind.value, e)
            return item.with_scoring_error(ItemError.from_exception(e))

    # --- state machine helpers ---

    @contextmanager
    def _exclusive(self):
        if not self._run_lock.acquire(blocking=False):
            raise PipelineBusyError(f"Pipeline is busy ({self.snapshot().stage.value})")
        try:
            yield
        finally:
            self._run_lock.release()

    def _begin(self, stage: PipelineStage) -> PipelineState:
        state = self.snapshot()
        if not state.items:
            raise EmptyBatchError("No images in the current batch")
        self._cancel.clear()
        if stage == PipelineStage.PREPROCESSING:
            items = tuple(replace(item, result=None) for item in state.items)
            state = replace(state, items=items)
        _logger.info("Starting %s of %d items", stage.value, len(state.items))
        return self._set_state(replace(state, stage=stage, progress=0, overall_result=None))

    def _finish(self, **changes) -> PipelineState:
        return self._set_state(replace(self.snapshot(), stage=PipelineStage.IDLE, **changes))

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            state = self.snapshot()
            _logger.warning("%s cancelled at %d%%", state.stage.value.capitalize(), state.progress)
            raise PipelineCancelledError(replace(state, stage=PipelineStage.IDLE))

    def _set_state(self, state: PipelineState) -> PipelineState:
        with self._state_lock:
            self._state = state
        return state

    def _publish(self, state: PipelineState) -> None:
        self._set_state(state)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                _logger.exception("State listener %r failed", listener)


def _progress(completed: int, total: int) -> int:
    return round_half_up(100 * completed, total)
