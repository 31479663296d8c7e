from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from damage_pipeline.core.di.service_locator import ServiceLocator
from damage_pipeline.core.utils.logger import get_logger
from damage_pipeline.domain.entities.image_entity import ImageFile, is_raster_media_type
from damage_pipeline.domain.entities.score_entity import ScoreResult
from damage_pipeline.domain.exceptions import ScoringError


router = APIRouter(prefix="/api/v1/damage", tags=["damage"])
logger = get_logger("damage_router")


class ScoreResultResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    damage_percentage: int = Field(..., alias="damagePercentage", ge=0, le=100)
    confidence: int = Field(..., ge=0, le=100)

    @classmethod
    def from_entity(cls, result: ScoreResult) -> "ScoreResultResponse":
        return cls(damage_percentage=result.damage_percentage, confidence=result.confidence)


def read_upload(upload: UploadFile) -> ImageFile:
    data = upload.file.read()
    return ImageFile.from_bytes(data, media_type=upload.content_type or "", filename=upload.filename or "image")


@router.post("/analyze", response_model=ScoreResultResponse)
def analyze_damage(
    file: UploadFile = File(..., description="Foto del vehículo"),
    normalize: bool = Query(False, description="Redimensionar y corregir brillo/contraste antes de puntuar"),
):
    if not is_raster_media_type(file.content_type):
        raise HTTPException(status_code=400, detail=f"Tipo de archivo no soportado: {file.content_type}. Solo se admiten imágenes.")

    image = read_upload(file)
    if not image.data:
        raise HTTPException(status_code=400, detail="El archivo proporcionado está vacío.")

    usecase = ServiceLocator.analyze_image_usecase()
    try:
        result = usecase.analyze(image, normalize=normalize)
    except ScoringError as e:
        logger.error("Error en análisis de daños (%s): %s", e.kind.value, e)
        raise HTTPException(status_code=502, detail=f"Error llamando servicio de análisis: {e}")

    return ScoreResultResponse.from_entity(result)
