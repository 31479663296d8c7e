from abc import ABC, abstractmethod

from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.entities.score_entity import ScoreResult


class DamageScoringRepository(ABC):
    """Contract for the external service that scores damage on one image."""

    @abstractmethod
    def score(self, image: ImageFile) -> ScoreResult:
        """
        Score a single image.

        Raises a ScoringError subclass (TransportFailureError, ServiceError,
        MalformedResponseError) when no usable answer is obtained. Every call is
        a single attempt; retries are not done here.
        """
        raise NotImplementedError
