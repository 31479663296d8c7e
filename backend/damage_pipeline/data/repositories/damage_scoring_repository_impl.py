from damage_pipeline.core.utils.logger import get_logger
from damage_pipeline.data.adapters.damage_api_client import DamageApiClient
from damage_pipeline.domain.entities.image_entity import ImageFile
from damage_pipeline.domain.entities.score_entity import ScoreResult
from damage_pipeline.domain.exceptions import MalformedResponseError
from damage_pipeline.domain.repositories.damage_scoring_repository import DamageScoringRepository

_logger = get_logger("damage_repo")


class DamageScoringRepositoryImpl(DamageScoringRepository):
    """Implementación del repositorio que usa DamageApiClient para puntuar daños."""

    def __init__(self, client: DamageApiClient):
        self._client = client

    def score(self, image: ImageFile) -> ScoreResult:
        data = self._client.analyze_file(image.data, image.filename, image.media_type)

        if not isinstance(data, dict):
            raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")
        missing = [key for key in ("damagePercentage", "confidence") if key not in data]
        if missing:
            _logger.warning("Respuesta sin campos %s: %s", missing, str(data)[:200])
            raise MalformedResponseError(f"Missing fields in response: {', '.join(missing)}")

        result = ScoreResult.from_raw(data["damagePercentage"], data["confidence"])
        _logger.debug("Imagen %s puntuada: %s", image.filename, result)
        return result
