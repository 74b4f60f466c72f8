from typing import Iterable

from autocount.models import CountItem, CountResponse, UpstreamDetection


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def box_center(detection: UpstreamDetection, width: int, height: int) -> tuple[float, float]:
    box = detection.box
    cx = ((box.xmin + box.xmax) / 2) / max(1, width)
    cy = ((box.ymin + box.ymax) / 2) / max(1, height)
    return clamp(cx, 0.0, 1.0), clamp(cy, 0.0, 1.0)


def build_count_response(
    detections: Iterable[UpstreamDetection],
    width: int,
    height: int,
    threshold: float,
) -> CountResponse:
    """Drop low-score detections and number the rest "1".."n" in input order.

    Upstream labels are discarded; centers are relative to the submitted image.
    """
    items: list[CountItem] = []
    for detection in detections:
        if detection.score < threshold:
            continue
        center_x, center_y = box_center(detection, width, height)
        items.append(
            CountItem(
                label=str(len(items) + 1),
                center_x=center_x,
                center_y=center_y,
                confidence=detection.score,
            )
        )
    return CountResponse(count=len(items), items=items)
