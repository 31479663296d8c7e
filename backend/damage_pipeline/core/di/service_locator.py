from typing import Optional

from damage_pipeline.core.config.environment_config import EnvironmentConfig
from damage_pipeline.core.utils.logger import get_logger
from damage_pipeline.data.adapters.damage_api_client import DamageApiClient
from damage_pipeline.data.repositories.damage_scoring_repository_impl import DamageScoringRepositoryImpl
from damage_pipeline.domain.repositories.damage_scoring_repository import DamageScoringRepository
from damage_pipeline.domain.usecases.analyze_image_damage_usecase import AnalyzeImageDamageUseCase
from damage_pipeline.domain.usecases.batch_pipeline_usecase import BatchPipeline
from damage_pipeline.domain.usecases.normalize_image_usecase import ImageNormalizer

_logger = get_logger("config")


class ServiceLocator:
    _config: Optional[EnvironmentConfig] = None
    _api_client: Optional[DamageApiClient] = None
    _scoring_repo: Optional[DamageScoringRepository] = None
    _normalizer: Optional[ImageNormalizer] = None
    _batch_pipeline: Optional[BatchPipeline] = None
    _analyze_image_usecase: Optional[AnalyzeImageDamageUseCase] = None

    @classmethod
    def config(cls) -> EnvironmentConfig:
        if cls._config is None:
            cls._config = EnvironmentConfig()
            _logger.info(
                "APP_ENV=%s SCORING_API=%s%s SCORING_API_KEY=%s",
                cls._config.app_env,
                cls._config.scoring_api_base,
                cls._config.scoring_api_path,
                "SET" if cls._config.scoring_api_key else "MISSING",
            )
        return cls._config

    @classmethod
    def api_client(cls) -> DamageApiClient:
        if cls._api_client is None:
            cfg = cls.config()
            cls._api_client = DamageApiClient(
                base_url=cfg.scoring_api_base,
                endpoint_path=cfg.scoring_api_path,
                api_key=cfg.scoring_api_key,
                timeout=cfg.scoring_timeout,
            )
        return cls._api_client

    @classmethod
    def scoring_repo(cls) -> DamageScoringRepository:
        if cls._scoring_repo is None:
            cls._scoring_repo = DamageScoringRepositoryImpl(client=cls.api_client())
        return cls._scoring_repo

    @classmethod
    def normalizer(cls) -> ImageNormalizer:
        if cls._normalizer is None:
            cfg = cls.config()
            cls._normalizer = ImageNormalizer(
                size=cfg.normalize_size,
                brightness=cfg.normalize_brightness,
                contrast=cfg.normalize_contrast,
                jpeg_quality=cfg.normalize_jpeg_quality,
            )
        return cls._normalizer

    @classmethod
    def batch_pipeline(cls) -> BatchPipeline:
        if cls._batch_pipeline is None:
            cls._batch_pipeline = BatchPipeline(
                normalizer=cls.normalizer(),
                scorer=cls.scoring_repo(),
                preprocess_workers=cls.config().preprocess_workers,
            )
        return cls._batch_pipeline

    @classmethod
    def analyze_image_usecase(cls) -> AnalyzeImageDamageUseCase:
        if cls._analyze_image_usecase is None:
            cls._analyze_image_usecase = AnalyzeImageDamageUseCase(normalizer=cls.normalizer(), repository=cls.scoring_repo())
        return cls._analyze_image_usecase

    @classmethod
    def reset(cls) -> None:
        """Drop every cached instance so the next access rebuilds it."""
        cls._config = None
        cls._api_client = None
        cls._scoring_repo = None
        cls._normalizer = None
        cls._batch_pipeline = None
        cls._analyze_image_usecase = None
