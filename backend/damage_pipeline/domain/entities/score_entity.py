import math
from dataclasses import dataclass
from numbers import Real

from damage_pipeline.domain.exceptions import MalformedResponseError


SCORE_MIN = 0
SCORE_MAX = 100


def clamp_score(value: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, value))


@dataclass(frozen=True)
class ScoreResult:
    """Damage estimate for one image, or the aggregate of a batch.

    Both fields are integers in [0, 100].
    """
    damage_percentage: int
    confidence: int

    def __post_init__(self):
        # Every result, whoever built it, ends up as an int in [0, 100].
        object.__setattr__(self, "damage_percentage", clamp_score(int(self.damage_percentage)))
        object.__setattr__(self, "confidence", clamp_score(int(self.confidence)))

    @classmethod
    def from_raw(cls, damage, confidence) -> "ScoreResult":
        """Accept an oracle answer: truncate to int and clamp into [0, 100]."""
        return cls(
            damage_percentage=_accept("damagePercentage", damage),
            confidence=_accept("confidence", confidence),
        )


def _accept(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, (Real, str)):
        raise MalformedResponseError(f"'{name}' is not a number: {value!r}")
    try:
        number = float(value)
    except ValueError:
        raise MalformedResponseError(f"'{name}' is not a number: {value!r}")
    if not math.isfinite(number):
        raise MalformedResponseError(f"'{name}' is not finite: {value!r}")
    return clamp_score(int(number))
