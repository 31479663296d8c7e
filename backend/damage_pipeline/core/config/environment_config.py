import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


# .env values take precedence over empty defaults injected by the container.
try:
    load_dotenv(dotenv_path=os.path.join(os.getcwd(), ".env"), override=True)
except Exception:
    load_dotenv(override=True)


def _env(name: str, default: str):
    return field(default_factory=lambda: os.getenv(name, default))


def _env_int(name: str, default: int):
    return field(default_factory=lambda: int(os.getenv(name, str(default))))


def _env_float(name: str, default: float):
    return field(default_factory=lambda: float(os.getenv(name, str(default))))


@dataclass
class EnvironmentConfig:
    app_env: str = _env("APP_ENV", "development")
    log_level: str = _env("LOG_LEVEL", "INFO")
    # Damage scoring backend (multipart upload, answers {damagePercentage, confidence})
    scoring_api_base: str = _env("SCORING_API_BASE", "http://127.0.0.1:8000")
    scoring_api_path: str = _env("SCORING_API_PATH", "/api/analyze/")
    scoring_api_key: str = _env("SCORING_API_KEY", "")
    scoring_timeout: float = _env_float("SCORING_TIMEOUT", 60.0)
    # Normalization: square resample size, then contrast/brightness correction
    normalize_size: int = _env_int("NORMALIZE_SIZE", 512)
    normalize_brightness: int = _env_int("NORMALIZE_BRIGHTNESS", 15)
    normalize_contrast: int = _env_int("NORMALIZE_CONTRAST", 10)
    normalize_jpeg_quality: int = _env_int("NORMALIZE_JPEG_QUALITY", 90)
    # Threads used to normalize a batch; scoring is always sequential
    preprocess_workers: int = _env_int("PREPROCESS_WORKERS", 1)
