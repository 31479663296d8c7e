from typing import Iterable, Optional

from damage_pipeline.domain.entities.batch_entity import BatchItem
from damage_pipeline.domain.entities.score_entity import ScoreResult, clamp_score


def round_half_up(total: int, count: int) -> int:
    # Round half away from zero; totals are never negative.
    return (2 * total + count) // (2 * count)


def aggregate(items: Iterable[BatchItem]) -> Optional[ScoreResult]:
    """Average the scored items of a batch, or None when nothing was scored."""
    results = [item.result for item in items if item.result is not None]
    if not results:
        return None
    count = len(results)
    damage_total = sum(r.damage_percentage for r in results)
    confidence_total = sum(r.confidence for r in results)
    return ScoreResult(
        damage_percentage=clamp_score(round_half_up(damage_total, count)),
        confidence=clamp_score(round_half_up(confidence_total, count)),
    )
