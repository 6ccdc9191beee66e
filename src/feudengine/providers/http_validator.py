"""Client for a remote ``/api/validate-answer`` endpoint."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Tuple
from uuid import uuid4

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..core.schemas import SchemaValidationError, ValidationRequest, ValidationResponse, validate_payload
from .providers import AnswerValidator, ValidatorError, ValidatorFactory

LOGGER = structlog.get_logger(__name__)

DEFAULT_URL = "http://localhost:8000/api/validate-answer"
DEFAULT_TIMEOUT: Tuple[float, float] = (2.0, 5.0)  # connect, read


class HttpAnswerValidator(AnswerValidator):
    """POSTs the validation request as JSON and parses the verdict.

    The service answers HTTP 200 with ``{"matched": false}`` on its own
    failures; anything else (non-2xx, transport error, malformed body) is
    raised as :class:`ValidatorError`.
    """

    name = "http"

    def __init__(
        self,
        *,
        url: str = DEFAULT_URL,
        session: Optional[requests.Session] = None,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
        **_kwargs: Any,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or self._build_session()

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=1,
            backoff_factor=0.2,
            status_forcelist=(502, 503, 504),
            allowed_methods=frozenset({"POST"}),
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def close(self) -> None:
        self.session.close()

    async def validate(self, request: ValidationRequest) -> ValidationResponse:
        return await asyncio.to_thread(self._post, request)

    def _post(self, request: ValidationRequest) -> ValidationResponse:
        request_id = uuid4().hex
        payload = request.model_dump(mode="json", by_alias=True)
        try:
            LOGGER.debug("validator.request_start", url=self.url, request_id=request_id)
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.Timeout as exc:
            LOGGER.warning("validator.request_timeout", url=self.url, request_id=request_id)
            raise ValidatorError("Validator request timed out") from exc
        except requests.RequestException as exc:
            LOGGER.error("validator.request_failed", url=self.url, request_id=request_id, error=str(exc))
            raise ValidatorError("Validator request failed") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ValidatorError("Validator returned invalid JSON") from exc
        try:
            return validate_payload(kind="validation_response", payload=data)  # type: ignore[return-value]
        except SchemaValidationError as exc:
            LOGGER.warning("validator.malformed_response", request_id=request_id, errors=exc.errors)
            raise ValidatorError("Validator returned a malformed verdict") from exc


ValidatorFactory.register("http", HttpAnswerValidator)
