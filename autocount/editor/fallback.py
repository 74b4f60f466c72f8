import cv2
import numpy as np

from autocount.editor.client import Annotation, DetectionResult
from autocount.editor.geometry import clamp, round_half_up

MIN_AREA_RATIO = 0.0015
RELAXED_AREA_RATIO = 0.0009
MIN_AREA_PX = 40

NO_ITEMS = "AutoCount could not identify distinct items. Try improving focus, lighting, or adjusting the zone."


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def _component_centers(mask: np.ndarray, area_ratio: float) -> list[tuple[float, float]]:
    h, w = mask.shape[:2]
    min_area = max(MIN_AREA_PX, round_half_up(h * w * area_ratio))
    count, _, stats, _ = cv2.connectedComponentsWithStats(mask.astype(np.uint8), connectivity=8)

    centers: list[tuple[float, float]] = []
    for index in range(1, count):  # 0 is the background
        x, y, bw, bh, area = (int(v) for v in stats[index])
        if area < min_area:
            continue
        cx = ((x + x + bw - 1) / 2) / w
        cy = ((y + y + bh - 1) / 2) / h
        centers.append((clamp(cx, 0.0, 1.0), clamp(cy, 0.0, 1.0)))
    return centers


def _best_centers(gray: np.ndarray, threshold: float, area_ratio: float) -> list[tuple[float, float]]:
    dark = _component_centers(gray <= threshold, area_ratio)
    light = _component_centers(gray > threshold, area_ratio)
    return light if len(light) > len(dark) else dark


def count_locally(image: np.ndarray) -> DetectionResult:
    """Count blobs in a crop with an Otsu split and connected components.

    Used when the detection proxy is unavailable. Whichever side of the
    threshold (dark or light) yields more components is taken as the items.
    """
    gray = _to_gray(image)
    if int(gray.min()) == int(gray.max()):
        return DetectionResult(count=0, advisory=NO_ITEMS)
    threshold, _ = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

    centers = _best_centers(gray, threshold, MIN_AREA_RATIO)
    if not centers:
        centers = _best_centers(gray, threshold, RELAXED_AREA_RATIO)
    if not centers:
        return DetectionResult(count=0, advisory=NO_ITEMS)

    centers.sort(key=lambda c: (c[1], c[0]))
    annotations = [
        Annotation(label=str(index + 1), center_x=cx, center_y=cy)
        for index, (cx, cy) in enumerate(centers)
    ]
    return DetectionResult(count=len(annotations), annotations=annotations)
