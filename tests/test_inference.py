import asyncio

import httpx
import pytest

from autocount.services.inference import InferenceClient, InferenceError, parse_detections

URL = "https://inference.test/models/detr"
IMAGE = b"\x89PNG fake bytes"

LOADING = {"error": "Model facebook/detr-resnet-50 is currently loading", "estimated_time": 20.0}
DETECTIONS = [{"label": "bolt", "score": 0.9, "box": {"xmin": 0, "ymin": 0, "xmax": 40, "ymax": 30}}]


def make_client(responses, max_attempts=3):
    requests = []
    delays = []

    def handler(request):
        requests.append(request)
        response = responses[len(requests) - 1]
        if isinstance(response, Exception):
            raise response
        return response

    async def sleep(delay):
        delays.append(delay)

    client = InferenceClient(
        URL,
        "hf_secret",
        max_attempts=max_attempts,
        retry_delay=1.0,
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )
    return client, requests, delays


def test_sends_raw_bytes_with_bearer_token():
    client, requests, delays = make_client([httpx.Response(200, json=DETECTIONS)])
    detections = asyncio.run(client.detect(IMAGE))

    assert len(detections) == 1
    assert detections[0].box.xmax == 40
    assert requests[0].headers["Authorization"] == "Bearer hf_secret"
    assert requests[0].content == IMAGE
    assert delays == []


def test_loading_then_success_retries_with_linear_backoff():
    responses = [
        httpx.Response(503, json=LOADING),
        httpx.Response(503, json=LOADING),
        httpx.Response(200, json=DETECTIONS),
    ]
    client, requests, delays = make_client(responses)
    detections = asyncio.run(client.detect(IMAGE))

    assert detections[0].score == 0.9
    assert len(requests) == 3
    assert delays == [1.0, 2.0]


def test_three_loading_then_success_with_room_for_a_fourth_attempt():
    responses = [httpx.Response(503, json=LOADING) for _ in range(3)] + [httpx.Response(200, json=DETECTIONS)]
    client, requests, delays = make_client(responses, max_attempts=4)
    detections = asyncio.run(client.detect(IMAGE))

    assert len(detections) == 1
    assert delays == [1.0, 2.0, 3.0]


def test_loading_on_every_attempt_gives_up_after_three():
    responses = [httpx.Response(503, json=LOADING) for _ in range(5)]
    client, requests, delays = make_client(responses)
    with pytest.raises(InferenceError):
        asyncio.run(client.detect(IMAGE))

    assert len(requests) == 3
    assert delays == [1.0, 2.0]


def test_other_error_status_is_not_retried():
    client, requests, delays = make_client([httpx.Response(500, text="boom"), httpx.Response(200, json=DETECTIONS)])
    with pytest.raises(InferenceError):
        asyncio.run(client.detect(IMAGE))

    assert len(requests) == 1
    assert delays == []


def test_transport_error_is_an_inference_error():
    client, requests, delays = make_client([httpx.ConnectError("connection refused")])
    with pytest.raises(InferenceError):
        asyncio.run(client.detect(IMAGE))


def test_non_json_body_is_an_inference_error():
    client, _, _ = make_client([httpx.Response(200, text="<html>nope</html>")])
    with pytest.raises(InferenceError):
        asyncio.run(client.detect(IMAGE))


@pytest.mark.parametrize(
    "payload",
    [
        {"detections": DETECTIONS},
        [{"score": 0.9}],
        [{"score": "high", "box": {"xmin": 0, "ymin": 0, "xmax": 1, "ymax": 1}}],
    ],
)
def test_unexpected_payload_shape(payload):
    with pytest.raises(InferenceError):
        parse_detections(payload)
