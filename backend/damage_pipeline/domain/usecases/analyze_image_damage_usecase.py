from damage_pipeline.core.utils.logger import get_logger
from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.entities.score_entity import ScoreResult
from damage_pipeline.domain.exceptions import NormalizationError
from damage_pipeline.domain.repositories.damage_scoring_repository import DamageScoringRepository
from damage_pipeline.domain.usecases.normalize_image_usecase import ImageNormalizer

_logger = get_logger("analyze_image")


class AnalyzeImageDamageUseCase:
    """Score a single image outside of any batch."""

    def __init__(self, normalizer: ImageNormalizer, repository: DamageScoringRepository):
        self._normalizer = normalizer
        self._repo = repository

    def analyze(self, image: ImageFile, normalize: bool = False) -> ScoreResult:
        """Optionally normalize, then score. ScoringError propagates to the caller."""
        target = image
        if normalize:
            try:
                target = self._normalizer.normalize(image)
            except NormalizationError as e:
                _logger.warning("Normalization failed for %s, scoring original: %s", image.filename, e)
        return self._repo.score(target)
