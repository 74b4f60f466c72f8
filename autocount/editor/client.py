import logging
import math
from dataclasses import dataclass, field
from typing import Any

import httpx

from autocount.config import settings
from autocount.editor.geometry import clamp

logger = logging.getLogger(__name__)


class CountError(RuntimeError):
    pass


@dataclass(frozen=True)
class Annotation:
    label: str
    center_x: float
    center_y: float
    confidence: float | None = None


@dataclass
class DetectionResult:
    count: int
    annotations: list[Annotation] = field(default_factory=list)
    advisory: str | None = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _coordinate(value: Any) -> float:
    # The service is not trusted to stay inside the crop.
    if not _is_number(value):
        return 0.5
    return clamp(float(value), 0.0, 1.0)


def parse_count_payload(payload: Any) -> DetectionResult:
    if not isinstance(payload, dict):
        raise CountError("AutoCount returned an invalid response")
    if payload.get("error"):
        raise CountError(str(payload["error"]))

    count = payload.get("count")
    if not _is_number(count) or count < 0:
        raise CountError("AutoCount response did not include a count")

    annotations: list[Annotation] = []
    items = payload.get("items")
    if isinstance(items, list):
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            label = item.get("label")
            confidence = item.get("confidence")
            annotations.append(
                Annotation(
                    label=str(index + 1) if label is None else str(label),
                    center_x=_coordinate(item.get("center_x")),
                    center_y=_coordinate(item.get("center_y")),
                    confidence=float(confidence) if _is_number(confidence) else None,
                )
            )
    return DetectionResult(count=int(count), annotations=annotations)


class AutoCountClient:
    """Submits cropped captures to the detection proxy."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url or settings.autocount_url
        self._timeout = settings.autocount_timeout if timeout is None else timeout
        self._transport = transport

    async def count(self, image_data_url: str, notes: str | None = None) -> DetectionResult:
        body: dict[str, Any] = {"imageDataUrl": image_data_url}
        if notes:
            body["notes"] = notes

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("AutoCount request failed: %s", exc)
            raise CountError("AutoCount service is unreachable. Check your connection and try again.") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.is_success:
            message = payload.get("error") if isinstance(payload, dict) else None
            raise CountError(str(message) if message else f"AutoCount service error ({response.status_code})")
        if payload is None:
            raise CountError("AutoCount returned an invalid response")
        return parse_count_payload(payload)
