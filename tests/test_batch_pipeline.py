"""Tests for the BatchPipeline state machine."""

import pytest

from damage_pipeline.domain.entities.batch_entity import ItemStatus, PipelineStage
from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.entities.score_entity import ScoreResult
from damage_pipeline.domain.exceptions import (
    AllItemsFailedError,
    EmptyBatchError,
    ErrorKind,
    InvalidInputError,
    PipelineBusyError,
    PipelineCancelledError,
    ServiceError,
    TransportFailureError,
)
from damage_pipeline.domain.usecases.batch_pipeline_usecase import BatchPipeline
from damage_pipeline.domain.usecases.normalize_image_usecase import ImageNormalizer


@pytest.fixture
def scorer(fake_scorer_cls):
    return fake_scorer_cls()


@pytest.fixture
def pipeline(scorer):
    return BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=scorer)


@pytest.fixture
def three_images(make_image, make_corrupt):
    return [make_image(filename="front.png"), make_corrupt("side.jpg"), make_image(filename="rear.png")]


# ---------------------------------------------------------------------------
# submit_batch / clear
# ---------------------------------------------------------------------------


def test_initial_state_is_idle_and_empty(pipeline):
    state = pipeline.snapshot()
    assert state.stage == PipelineStage.IDLE
    assert state.progress == 0
    assert state.items == ()
    assert state.overall_result is None


def test_submit_creates_pending_items_in_order(pipeline, make_image):
    images = [make_image(filename=f"{i}.png") for i in range(3)]
    state = pipeline.submit_batch(images)

    assert [item.index for item in state.items] == [0, 1, 2]
    assert [item.source_image.filename for item in state.items] == ["0.png", "1.png", "2.png"]
    assert all(item.status == ItemStatus.PENDING for item in state.items)
    assert all(item.normalized_image is None for item in state.items)
    assert state.stage == PipelineStage.IDLE
    assert state.progress == 0


def test_submit_empty_batch_rejected(pipeline):
    with pytest.raises(InvalidInputError):
        pipeline.submit_batch([])


def test_submit_with_non_raster_rejected_wholesale(pipeline, make_image):
    first = pipeline.submit_batch([make_image(filename="keep.png")])
    video = ImageFile(data=b"\x00\x00", media_type="video/mp4", filename="clip.mp4")

    with pytest.raises(InvalidInputError):
        pipeline.submit_batch([make_image(), video])

    assert pipeline.snapshot() == first


def test_resubmit_discards_previous_batch(pipeline, make_image):
    pipeline.submit_batch([make_image(filename=f"old{i}.png") for i in range(3)])
    pipeline.run_analysis()

    state = pipeline.submit_batch([make_image(filename="new.png")])

    assert [item.source_image.filename for item in state.items] == ["new.png"]
    assert state.items[0].result is None
    assert state.overall_result is None
    assert state.progress == 0


def test_clear_resets_state(pipeline, make_image):
    pipeline.submit_batch([make_image()])
    pipeline.run_analysis()
    state = pipeline.clear()
    assert state.items == ()
    assert state.overall_result is None
    with pytest.raises(EmptyBatchError):
        pipeline.run_analysis()


# ---------------------------------------------------------------------------
# run_preprocessing
# ---------------------------------------------------------------------------


def test_preprocessing_empty_batch(pipeline):
    with pytest.raises(EmptyBatchError):
        pipeline.run_preprocessing()


def test_preprocessing_records_item_failure_without_dropping_it(pipeline, three_images):
    pipeline.submit_batch(three_images)
    state = pipeline.run_preprocessing()

    assert state.stage == PipelineStage.IDLE
    assert state.progress == 100
    assert len(state.items) == 3
    assert state.items[0].normalized_image is not None
    assert state.items[2].normalized_image is not None
    assert state.items[1].normalized_image is None
    assert state.items[1].error.kind == ErrorKind.DECODE_FAILURE
    assert state.items[0].normalized_image.media_type == "image/jpeg"


def test_preprocessing_rerun_overwrites_and_clears_scores(pipeline, make_image):
    pipeline.submit_batch([make_image(), make_image()])
    pipeline.run_analysis()
    first = pipeline.run_preprocessing()
    second = pipeline.run_preprocessing()

    assert all(item.result is None for item in second.items)
    assert second.overall_result is None
    assert second.items[0].normalized_image is not first.items[0].normalized_image


def test_parallel_preprocessing_keeps_index_order(scorer, three_images):
    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=scorer, preprocess_workers=3)
    pipeline.submit_batch(three_images)
    seen = []
    pipeline.subscribe(lambda s: seen.append((s.progress, [i.status for i in s.items])))

    state = pipeline.run_preprocessing()

    assert [p for p, _ in seen] == [33, 67, 100]
    assert state.items[1].error.kind == ErrorKind.DECODE_FAILURE
    assert state.items[0].normalized_image is not None
    assert state.items[2].normalized_image is not None


# ---------------------------------------------------------------------------
# run_analysis
# ---------------------------------------------------------------------------


def test_analysis_empty_batch(pipeline):
    with pytest.raises(EmptyBatchError):
        pipeline.run_analysis()


def test_analysis_scores_every_item_and_aggregates(pipeline, scorer, make_image):
    pipeline.submit_batch([make_image() for _ in range(3)])
    state = pipeline.run_analysis()

    assert len(scorer.calls) == 3
    assert [item.result for item in state.items] == [ScoreResult(10, 90), ScoreResult(20, 90), ScoreResult(30, 90)]
    assert state.overall_result == ScoreResult(20, 90)
    assert state.stage == PipelineStage.IDLE
    assert state.progress == 100


def test_failed_normalization_scored_on_original(pipeline, scorer, three_images):
    pipeline.submit_batch(three_images)
    pipeline.run_preprocessing()
    state = pipeline.run_analysis()

    assert len(scorer.calls) == 3
    assert scorer.calls[0].media_type == "image/jpeg"
    assert scorer.calls[1] is three_images[1]
    assert scorer.calls[2].media_type == "image/jpeg"
    # Scoring succeeded for the fallback image, so its normalization error is cleared.
    assert sum(item.result is not None for item in state.items) == 3
    assert sum(item.error is not None for item in state.items) == 0
    assert state.progress == 100


def test_item_failing_both_stages_keeps_one_error(fake_scorer_cls, three_images):
    def behavior(image, n):
        if image.filename == "side.jpg":
            raise ServiceError(500)
        return ScoreResult(40, 80)

    scorer = fake_scorer_cls(behavior)
    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=scorer)
    pipeline.submit_batch(three_images)
    pipeline.run_preprocessing()
    state = pipeline.run_analysis()

    assert len(scorer.calls) == 3
    assert [item.status for item in state.items] == [ItemStatus.SCORED, ItemStatus.FAILED, ItemStatus.SCORED]
    assert state.items[1].error.kind == ErrorKind.SERVICE_ERROR
    assert state.items[1].error.status == 500
    assert state.items[1].result is None
    assert state.overall_result == ScoreResult(40, 80)


def test_unnormalized_batch_scores_source_images(pipeline, scorer, make_image):
    images = [make_image(), make_image()]
    pipeline.submit_batch(images)
    pipeline.run_analysis()
    assert scorer.calls == images


def test_progress_is_monotonic_and_ends_at_100(pipeline, make_image):
    pipeline.submit_batch([make_image() for _ in range(7)])
    seen = []
    pipeline.subscribe(lambda s: seen.append(s.progress))

    pipeline.run_analysis()

    assert len(seen) == 7
    assert seen == sorted(seen)
    assert seen[-1] == 100
    assert pipeline.snapshot().progress == 100


def test_listener_sees_analyzing_stage_and_partial_results(pipeline, make_image):
    pipeline.submit_batch([make_image() for _ in range(3)])
    seen = []
    pipeline.subscribe(seen.append)

    pipeline.run_analysis()

    assert all(s.stage == PipelineStage.ANALYZING for s in seen)
    assert [sum(i.result is not None for i in s.items) for s in seen] == [1, 2, 3]
    assert all(s.overall_result is None for s in seen)


def test_listener_failure_does_not_stop_batch(pipeline, make_image):
    def broken(_state):
        raise RuntimeError("render failed")

    pipeline.subscribe(broken)
    pipeline.submit_batch([make_image(), make_image()])
    assert pipeline.run_analysis().overall_result is not None


def test_unsubscribe_stops_events(pipeline, make_image):
    seen = []
    pipeline.subscribe(seen.append)
    pipeline.unsubscribe(seen.append)
    pipeline.submit_batch([make_image()])
    pipeline.run_analysis()
    assert seen == []


def test_all_items_failed(fake_scorer_cls, make_image):
    def behavior(image, n):
        raise TransportFailureError("timeout")

    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=fake_scorer_cls(behavior))
    pipeline.submit_batch([make_image(), make_image()])

    with pytest.raises(AllItemsFailedError) as exc:
        pipeline.run_analysis()

    state = exc.value.state
    assert state.overall_result is None
    assert state.progress == 100
    assert state.stage == PipelineStage.IDLE
    assert all(item.error.kind == ErrorKind.TRANSPORT_FAILURE for item in state.items)
    assert pipeline.snapshot() == state


def test_reanalysis_clears_previous_error(fake_scorer_cls, make_image):
    answers = iter([TransportFailureError("down"), ScoreResult(5, 95)])

    def behavior(image, n):
        answer = next(answers)
        if isinstance(answer, Exception):
            raise answer
        return answer

    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=fake_scorer_cls(behavior))
    pipeline.submit_batch([make_image()])
    with pytest.raises(AllItemsFailedError):
        pipeline.run_analysis()

    state = pipeline.run_analysis()
    assert state.items[0].error is None
    assert state.items[0].result == ScoreResult(5, 95)


def test_unexpected_error_returns_to_idle(fake_scorer_cls, make_image):
    def behavior(image, n):
        raise RuntimeError("bug")

    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=fake_scorer_cls(behavior))
    pipeline.submit_batch([make_image()])
    with pytest.raises(RuntimeError):
        pipeline.run_analysis()

    assert pipeline.snapshot().stage == PipelineStage.IDLE
    # Lock was released: the next operation is accepted.
    pipeline.clear()


# ---------------------------------------------------------------------------
# Busy guard and cancellation
# ---------------------------------------------------------------------------


def test_operations_rejected_while_running(fake_scorer_cls, make_image):
    errors = []
    holder = {}

    def behavior(image, n):
        p = holder["pipeline"]
        for op in (p.run_analysis, p.run_preprocessing, p.clear, lambda: p.submit_batch([make_image()])):
            try:
                op()
            except PipelineBusyError as e:
                errors.append(e)
        return ScoreResult(1, 1)

    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=fake_scorer_cls(behavior))
    holder["pipeline"] = pipeline
    pipeline.submit_batch([make_image()])
    pipeline.run_analysis()

    assert len(errors) == 4


def test_cancel_between_items(fake_scorer_cls, make_image):
    holder = {}

    def behavior(image, n):
        holder["pipeline"].cancel()
        return ScoreResult(50, 50)

    scorer = fake_scorer_cls(behavior)
    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=scorer)
    holder["pipeline"] = pipeline
    pipeline.submit_batch([make_image() for _ in range(3)])

    with pytest.raises(PipelineCancelledError) as exc:
        pipeline.run_analysis()

    state = pipeline.snapshot()
    assert len(scorer.calls) == 1
    assert state.stage == PipelineStage.IDLE
    assert state.items[0].result == ScoreResult(50, 50)
    assert [item.status for item in state.items[1:]] == [ItemStatus.PENDING, ItemStatus.PENDING]
    assert state.overall_result is None
    assert exc.value.state.items == state.items


def test_cancel_preprocessing(pipeline, make_image):
    pipeline.submit_batch([make_image() for _ in range(4)])
    pipeline.subscribe(lambda s: pipeline.cancel())

    with pytest.raises(PipelineCancelledError):
        pipeline.run_preprocessing()

    state = pipeline.snapshot()
    assert state.stage == PipelineStage.IDLE
    assert state.items[0].normalized_image is not None
    assert all(item.normalized_image is None for item in state.items[1:])


def test_cancel_signal_reset_for_next_run(pipeline, make_image):
    pipeline.submit_batch([make_image(), make_image()])
    pipeline.cancel()
    assert pipeline.run_analysis().overall_result is not None


def test_invalid_batch_while_running_is_busy(fake_scorer_cls, make_image):
    errors = []
    holder = {}

    def behavior(image, n):
        video = ImageFile(data=b"\x00", media_type="video/mp4", filename="clip.mp4")
        for images in ([], [video]):
            try:
                holder["pipeline"].submit_batch(images)
            except (PipelineBusyError, InvalidInputError) as e:
                errors.append(type(e))
        return ScoreResult(1, 1)

    pipeline = BatchPipeline(normalizer=ImageNormalizer(size=32), scorer=fake_scorer_cls(behavior))
    holder["pipeline"] = pipeline
    pipeline.submit_batch([make_image()])
    pipeline.run_analysis()

    assert errors == [PipelineBusyError, PipelineBusyError]


def test_out_of_range_scorer_answer_is_clamped(fake_scorer_cls, make_image):
    pipeline = BatchPipeline(
        normalizer=ImageNormalizer(size=32),
        scorer=fake_scorer_cls(lambda image, n: ScoreResult(150, -3)),
    )
    pipeline.submit_batch([make_image(), make_image()])
    state = pipeline.run_analysis()

    assert [item.result for item in state.items] == [ScoreResult(100, 0), ScoreResult(100, 0)]
    assert state.items[0].result.damage_percentage == 100
    assert state.items[0].result.confidence == 0
    assert state.overall_result == ScoreResult(100, 0)
