from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError

from autocount.config import settings
from autocount.models import UpstreamDetection

logger = logging.getLogger(__name__)

# The hosted inference API answers 503 while a cold model is being loaded.
LOADING_STATUS = 503


class InferenceError(RuntimeError):
    pass


def parse_detections(payload: Any) -> list[UpstreamDetection]:
    if not isinstance(payload, list):
        raise InferenceError("Invalid inference response format")
    try:
        return [UpstreamDetection.parse_obj(item) for item in payload]
    except ValidationError as exc:
        raise InferenceError("Invalid inference response format") from exc


class InferenceClient:
    """Object-detection client for a hosted inference endpoint.

    Sends raw image bytes and retries only while the model reports it is
    loading, waiting ``attempt * retry_delay`` seconds between attempts.
    """

    def __init__(
        self,
        url: str,
        token: str,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._url = url
        self._token = token
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, **kwargs) -> InferenceClient | None:
        if not settings.inference_api_token:
            return None
        return cls(
            settings.inference_url,
            settings.inference_api_token,
            max_attempts=settings.inference_max_attempts,
            retry_delay=settings.inference_retry_delay,
            timeout=settings.inference_timeout,
            **kwargs,
        )

    async def detect(self, image: bytes) -> list[UpstreamDetection]:
        payload = await self._request(image)
        return parse_detections(payload)

    async def _request(self, image: bytes) -> Any:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/octet-stream",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(1, self._max_attempts + 1):
                try:
                    response = await client.post(self._url, content=image, headers=headers)
                except httpx.HTTPError as exc:
                    logger.error("Inference request failed: %s", exc)
                    raise InferenceError("Inference request failed") from exc

                if response.status_code == LOADING_STATUS:
                    logger.info("Inference model loading (attempt %d/%d)", attempt, self._max_attempts)
                    if attempt < self._max_attempts:
                        await self._sleep(attempt * self._retry_delay)
                    continue

                if not response.is_success:
                    logger.error("Inference API error %s: %s", response.status_code, response.text[:500])
                    raise InferenceError("Inference request failed")

                try:
                    return response.json()
                except ValueError as exc:
                    logger.error("Inference response is not JSON: %s", response.text[:500])
                    raise InferenceError("Invalid inference response format") from exc

        logger.error("Inference model still loading after %d attempts", self._max_attempts)
        raise InferenceError("Inference model is still loading, try again shortly")
