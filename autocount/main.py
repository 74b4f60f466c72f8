import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from autocount.config import settings
from autocount.imaging import ImageError, decode_data_url, image_size, is_image_data_url
from autocount.models import CountRequest, CountResponse
from autocount.services.detections import build_count_response
from autocount.services.inference import InferenceClient, InferenceError

logger = logging.getLogger(__name__)

app = FastAPI(title="AutoCount detection proxy")

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Content-Type": "application/json",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
INVALID_IMAGE = "imageDataUrl must be a base64 data URL string"


class ProxyError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def get_inference_client() -> InferenceClient | None:
    return InferenceClient.from_settings()


@app.middleware("http")
async def cors_headers(request: Request, call_next):
    # Preflight never reaches the routes.
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=PREFLIGHT_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code != 405:
        return await http_exception_handler(request, exc)
    response = _error(405, "Method not allowed")
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.on_event("startup")
async def startup() -> None:
    if not settings.inference_api_token:
        logger.warning("Inference credential is not configured; /autocount will fail")


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


async def _count(request: Request, client: InferenceClient | None) -> CountResponse:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ProxyError(400, "Invalid JSON body") from exc

    if not isinstance(body, dict) or not is_image_data_url(body.get("imageDataUrl")):
        raise ProxyError(400, INVALID_IMAGE)
    try:
        payload = CountRequest.parse_obj(body)
    except ValidationError as exc:
        raise ProxyError(400, "notes must be a string") from exc

    if client is None:
        logger.error("Inference credential is missing from the environment")
        raise ProxyError(500, "Server misconfiguration")

    try:
        image = decode_data_url(payload.imageDataUrl)
    except ImageError as exc:
        raise ProxyError(400, INVALID_IMAGE) from exc

    width, height = image_size(image)
    if payload.notes:
        logger.debug("Operator notes: %s", payload.notes)

    detections = await client.detect(image)
    result = build_count_response(detections, width, height, settings.confidence_threshold)
    logger.info(
        "AutoCount %dx%d: %d of %d detections above %.2f",
        width,
        height,
        result.count,
        len(detections),
        settings.confidence_threshold,
    )
    return result


@app.post("/autocount")
async def autocount(
    request: Request,
    client: InferenceClient | None = Depends(get_inference_client),
) -> JSONResponse:
    try:
        result = await _count(request, client)
    except ProxyError as exc:
        return _error(exc.status_code, exc.message)
    except InferenceError as exc:
        return _error(502, str(exc))
    except Exception:
        logger.exception("AutoCount function failed")
        return _error(500, "Server error")
    return JSONResponse(result.dict(exclude_none=True))
