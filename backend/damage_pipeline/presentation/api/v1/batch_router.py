from typing import Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, File, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from damage_pipeline.core.di.service_locator import ServiceLocator
from damage_pipeline.core.utils.logger import get_logger
from damage_pipeline.domain.entities.batch_entity import BatchItem, PipelineState
from damage_pipeline.domain.exceptions import (
    AllItemsFailedError,
    EmptyBatchError,
    InvalidInputError,
    PipelineBusyError,
    PipelineCancelledError,
    PipelineError,
)
from damage_pipeline.presentation.api.v1.damage_router import ScoreResultResponse, read_upload


router = APIRouter(prefix="/api/v1/batch", tags=["batch"])
logger = get_logger("batch_router")


class ItemErrorResponse(BaseModel):
    kind: str
    message: str
    status: Optional[int] = None


class BatchItemResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: int
    filename: str
    media_type: str = Field(..., alias="mediaType")
    width: Optional[int] = None
    height: Optional[int] = None
    normalized: bool = False
    status: str
    result: Optional[ScoreResultResponse] = None
    error: Optional[ItemErrorResponse] = None

    @classmethod
    def from_entity(cls, item: BatchItem) -> "BatchItemResponse":
        src = item.source_image
        return cls(
            index=item.index,
            filename=src.filename,
            media_type=src.media_type,
            width=src.width,
            height=src.height,
            normalized=item.normalized_image is not None,
            status=item.status.value,
            result=ScoreResultResponse.from_entity(item.result) if item.result is not None else None,
            error=ItemErrorResponse(kind=item.error.kind.value, message=item.error.message, status=item.error.status)
            if item.error is not None else None,
        )


class PipelineStateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stage: str
    progress: int = Field(..., ge=0, le=100)
    items: List[BatchItemResponse]
    overall_result: Optional[ScoreResultResponse] = Field(None, alias="overallResult")

    @classmethod
    def from_entity(cls, state: PipelineState) -> "PipelineStateResponse":
        return cls(
            stage=state.stage.value,
            progress=state.progress,
            items=[BatchItemResponse.from_entity(item) for item in state.items],
            overall_result=ScoreResultResponse.from_entity(state.overall_result)
            if state.overall_result is not None else None,
        )


def _state_body(state: PipelineState) -> dict:
    return PipelineStateResponse.from_entity(state).model_dump(mode="json", by_alias=True)


def _run_in_background(operation: Callable[[], PipelineState]) -> None:
    try:
        operation()
    except PipelineError as e:
        logger.warning("Operación en segundo plano terminó con error: %s", e)


def _start(operation_name: str, wait: bool, background: BackgroundTasks, response: Response):
    pipeline = ServiceLocator.batch_pipeline()
    operation = getattr(pipeline, operation_name)
    if not wait:
        # Early answer only; the pipeline re-checks when the task starts and a
        # batch that changed meanwhile makes the background run log its error.
        current = pipeline.snapshot()
        if not current.is_idle:
            raise HTTPException(status_code=409, detail=f"Pipeline ocupado ({current.stage.value})")
        if not current.items:
            raise HTTPException(status_code=400, detail="No hay imágenes en el lote actual.")
        background.add_task(_run_in_background, operation)
        response.status_code = 202
        return PipelineStateResponse.from_entity(current)

    try:
        return PipelineStateResponse.from_entity(operation())
    except EmptyBatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PipelineBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PipelineCancelledError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "state": _state_body(e.state)})
    except AllItemsFailedError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "state": _state_body(e.state)})


@router.get("", response_model=PipelineStateResponse)
def get_batch():
    return PipelineStateResponse.from_entity(ServiceLocator.batch_pipeline().snapshot())


@router.post("", response_model=PipelineStateResponse)
def submit_batch(files: List[UploadFile] = File(..., description="Fotos del vehículo (varios ángulos)")):
    images = [read_upload(f) for f in files]
    try:
        state = ServiceLocator.batch_pipeline().submit_batch(images)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PipelineBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return PipelineStateResponse.from_entity(state)


@router.delete("", response_model=PipelineStateResponse)
def clear_batch():
    try:
        return PipelineStateResponse.from_entity(ServiceLocator.batch_pipeline().clear())
    except PipelineBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/preprocess", response_model=PipelineStateResponse)
def preprocess_batch(
    background: BackgroundTasks,
    response: Response,
    wait: bool = Query(True, description="Esperar a que termine; si es false se ejecuta en segundo plano"),
):
    return _start("run_preprocessing", wait, background, response)


@router.post("/analyze", response_model=PipelineStateResponse)
def analyze_batch(
    background: BackgroundTasks,
    response: Response,
    wait: bool = Query(True, description="Esperar a que termine; si es false se ejecuta en segundo plano"),
):
    return _start("run_analysis", wait, background, response)


@router.post("/cancel", response_model=PipelineStateResponse, status_code=202)
def cancel_batch():
    pipeline = ServiceLocator.batch_pipeline()
    pipeline.cancel()
    return PipelineStateResponse.from_entity(pipeline.snapshot())
