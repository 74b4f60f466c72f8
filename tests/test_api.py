import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from autocount import main
from autocount.config import settings
from autocount.services.inference import InferenceClient

TOKEN = "hf_test_secret_token"

SCENARIO = [
    {"score": 0.9, "box": {"xmin": 0, "ymin": 0, "xmax": 40, "ymax": 30}},
    {"score": 0.1, "box": {"xmin": 100, "ymin": 100, "xmax": 140, "ymax": 130}},
]


async def _no_sleep(delay):
    return None


def use_inference(responses):
    """Route the proxy's upstream calls to canned responses."""
    requests = []

    def handler(request):
        requests.append(request)
        return responses.pop(0)

    inference = InferenceClient(
        "https://inference.test/models/detr",
        TOKEN,
        transport=httpx.MockTransport(handler),
        sleep=_no_sleep,
    )
    main.app.dependency_overrides[main.get_inference_client] = lambda: inference
    return requests


@pytest.fixture
def api(monkeypatch):
    monkeypatch.setattr(settings, "inference_api_token", TOKEN)
    monkeypatch.setattr(settings, "confidence_threshold", 0.25)
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


def test_preflight(api):
    response = api.options(
        "/autocount",
        headers={"Origin": "https://app.example", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert "POST" in response.headers["access-control-allow-methods"]


@pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE", "TRACE"])
def test_other_methods_not_allowed(api, method):
    response = api.request(method, "/autocount")
    assert response.status_code == 405
    assert response.json() == {"error": "Method not allowed"}
    assert response.headers["access-control-allow-origin"] == "*"


def test_unknown_path_keeps_default_error(api):
    response = api.get("/missing")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}


def test_invalid_json(api):
    response = api.post("/autocount", content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body"}
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"notes": "bolts"},
        {"imageDataUrl": 42},
        {"imageDataUrl": "https://example.com/photo.png"},
        {"imageDataUrl": "data:image/png;base64,@@@not-base64@@@"},
        ["data:image/png;base64,AAAA"],
    ],
)
def test_invalid_image_field(api, body):
    response = api.post("/autocount", json=body)
    assert response.status_code == 400
    assert "imageDataUrl" in response.json()["error"]
    assert response.headers["content-type"] == "application/json"


def test_missing_credential(api, monkeypatch, png_data_url):
    monkeypatch.setattr(settings, "inference_api_token", None)
    response = api.post("/autocount", json={"imageDataUrl": png_data_url(40, 30)})

    assert response.status_code == 500
    assert response.json() == {"error": "Server misconfiguration"}
    assert "HF_API_TOKEN" not in response.text
    assert response.headers["access-control-allow-origin"] == "*"


def test_counts_and_normalizes_detections(api, png_data_url):
    requests = use_inference([httpx.Response(200, json=SCENARIO)])
    response = api.post("/autocount", json={"imageDataUrl": png_data_url(400, 300), "notes": "M6 bolts"})

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.json() == {
        "count": 1,
        "items": [
            {"label": "1", "center_x": pytest.approx(0.05), "center_y": pytest.approx(0.05), "confidence": 0.9}
        ],
    }
    assert requests[0].headers["Authorization"] == f"Bearer {TOKEN}"
    assert requests[0].content.startswith(b"\x89PNG")


def test_undecodable_image_falls_back_to_unit_size(api):
    use_inference([httpx.Response(200, json=[{"score": 0.8, "box": {"xmin": 0, "ymin": 0, "xmax": 0.5, "ymax": 0.5}}])])
    data_url = "data:image/png;base64," + base64.b64encode(b"definitely not a png").decode()
    response = api.post("/autocount", json={"imageDataUrl": data_url})

    assert response.status_code == 200
    item = response.json()["items"][0]
    assert item["center_x"] == pytest.approx(0.25)
    assert item["center_y"] == pytest.approx(0.25)


def test_model_loading_is_retried(api, png_data_url):
    requests = use_inference([
        httpx.Response(503, json={"error": "loading"}),
        httpx.Response(200, json=SCENARIO),
    ])
    response = api.post("/autocount", json={"imageDataUrl": png_data_url(400, 300)})

    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert len(requests) == 2


def test_model_still_loading_is_bad_gateway(api, png_data_url):
    requests = use_inference([httpx.Response(503, json={"error": "loading"}) for _ in range(4)])
    response = api.post("/autocount", json={"imageDataUrl": png_data_url(400, 300)})

    assert response.status_code == 502
    assert "error" in response.json()
    assert len(requests) == 3


@pytest.mark.parametrize(
    "upstream",
    [
        httpx.Response(500, text="internal"),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, text="not json"),
    ],
)
def test_upstream_failures_are_bad_gateway(api, png_data_url, upstream):
    requests = use_inference([upstream])
    response = api.post("/autocount", json={"imageDataUrl": png_data_url(400, 300)})

    assert response.status_code == 502
    assert response.headers["access-control-allow-origin"] == "*"
    assert len(requests) == 1


def test_unhandled_failure_is_server_error(api, png_data_url):
    class Broken:
        async def detect(self, image):
            raise RuntimeError("kaboom")

    main.app.dependency_overrides[main.get_inference_client] = lambda: Broken()
    response = api.post("/autocount", json={"imageDataUrl": png_data_url(40, 30)})

    assert response.status_code == 500
    assert response.json() == {"error": "Server error"}
    assert "kaboom" not in response.text


def test_health(api):
    assert api.get("/health").json() == {"ok": True}
