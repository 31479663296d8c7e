from typing import Any, Dict, Optional

import requests

from damage_pipeline.core.utils.logger import get_logger
from damage_pipeline.domain.exceptions import MalformedResponseError, ServiceError, TransportFailureError

_logger = get_logger("damage_api_client")


class DamageApiClient:
    """Cliente HTTP para el servicio de puntuación de daños.

    El servicio recibe un formulario multipart con un único campo ``file`` y
    responde un JSON ``{"damagePercentage": ..., "confidence": ...}``.
    Cada llamada es un único intento; no se reintenta aquí.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        endpoint_path: str = "/api/analyze/",
        api_key: str = "",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.endpoint_path = "/" + endpoint_path.lstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.endpoint_path}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def analyze_file(self, data: bytes, filename: str, media_type: str) -> Any:
        """Envía una imagen y devuelve el JSON decodificado de la respuesta."""
        files = {"file": (filename, data, media_type)}
        try:
            resp = self._session.post(self.url, files=files, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            _logger.error("Timeout llamando servicio de daños (%ss): %s", self.timeout, e)
            raise TransportFailureError(f"Timeout after {self.timeout}s: {e}")
        except requests.RequestException as e:
            _logger.error("Error de red llamando servicio de daños: %s", e)
            raise TransportFailureError(str(e))

        if resp.status_code >= 400:
            _logger.error("Servicio de daños respondió %s: %s", resp.status_code, (resp.text or "")[:200])
            raise ServiceError(resp.status_code, f"Scoring service returned HTTP {resp.status_code}: {(resp.text or '')[:200]}")

        try:
            return resp.json()
        except ValueError:
            _logger.warning("Respuesta del servicio de daños no es JSON: %s", (resp.text or "")[:200])
            raise MalformedResponseError(f"Response is not JSON: {(resp.text or '')[:200]}")
