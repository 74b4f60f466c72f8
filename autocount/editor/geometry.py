import math
from dataclasses import dataclass
from enum import Enum

MIN_SIZE = 0.1


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class Edge(Enum):
    LEADING = "leading"  # left / top
    TRAILING = "trailing"  # right / bottom


class DragHandle(Enum):
    MOVE = ("move", None, None)
    TOP_LEFT = ("top-left", Edge.LEADING, Edge.LEADING)
    TOP_RIGHT = ("top-right", Edge.TRAILING, Edge.LEADING)
    BOTTOM_LEFT = ("bottom-left", Edge.LEADING, Edge.TRAILING)
    BOTTOM_RIGHT = ("bottom-right", Edge.TRAILING, Edge.TRAILING)

    def __init__(self, label: str, horizontal: Edge | None, vertical: Edge | None) -> None:
        self.label = label
        self.horizontal = horizontal
        self.vertical = vertical

    @property
    def is_corner(self) -> bool:
        return self is not DragHandle.MOVE


CORNERS = (DragHandle.TOP_LEFT, DragHandle.TOP_RIGHT, DragHandle.BOTTOM_LEFT, DragHandle.BOTTOM_RIGHT)


@dataclass(frozen=True)
class OverlayRect:
    """ROI in coordinates normalized to the captured frame."""

    x: float = 0.15
    y: float = 0.15
    width: float = 0.7
    height: float = 0.6

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def corner(self, handle: DragHandle) -> tuple[float, float]:
        cx = self.x if handle.horizontal is Edge.LEADING else self.right
        cy = self.y if handle.vertical is Edge.LEADING else self.bottom
        return cx, cy

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.right and self.y <= py <= self.bottom


@dataclass(frozen=True)
class ContainerBounds:
    """On-screen pixel box the frozen frame is drawn into."""

    left: float
    top: float
    width: float
    height: float

    def to_normalized(self, px: float, py: float) -> tuple[float, float]:
        return (px - self.left) / self.width, (py - self.top) / self.height

    def to_pixels(self, nx: float, ny: float) -> tuple[float, float]:
        return self.left + nx * self.width, self.top + ny * self.height


def _translate(pos: float, size: float, delta: float) -> float:
    return clamp(pos + delta, 0.0, max(0.0, 1.0 - size))


def _resize_leading(pos: float, size: float, delta: float, min_size: float) -> tuple[float, float]:
    # The trailing edge stays pinned; sizes are rebuilt from it and floored at min_size.
    far = min(pos + size, 1.0)
    new_pos = clamp(pos + delta, 0.0, max(0.0, far - min_size))
    return new_pos, max(min_size, far - new_pos)


def _resize_trailing(pos: float, size: float, delta: float, min_size: float) -> tuple[float, float]:
    return pos, max(min_size, clamp(size + delta, min_size, 1.0 - pos))


def _apply_axis(edge: Edge | None, pos: float, size: float, delta: float, min_size: float) -> tuple[float, float]:
    if edge is Edge.LEADING:
        return _resize_leading(pos, size, delta, min_size)
    if edge is Edge.TRAILING:
        return _resize_trailing(pos, size, delta, min_size)
    return pos, size


def apply_drag(
    handle: DragHandle,
    start: OverlayRect,
    dx: float,
    dy: float,
    min_size: float = MIN_SIZE,
) -> OverlayRect:
    """Rectangle produced by dragging ``handle`` by (dx, dy) from ``start``.

    Deltas are normalized and always measured from the drag start, so calling
    this repeatedly during a gesture never accumulates error.
    """
    if handle is DragHandle.MOVE:
        return OverlayRect(
            x=_translate(start.x, start.width, dx),
            y=_translate(start.y, start.height, dy),
            width=start.width,
            height=start.height,
        )
    x, width = _apply_axis(handle.horizontal, start.x, start.width, dx, min_size)
    y, height = _apply_axis(handle.vertical, start.y, start.height, dy, min_size)
    return OverlayRect(x=x, y=y, width=width, height=height)


def hit_test(
    rect: OverlayRect,
    bounds: ContainerBounds,
    px: float,
    py: float,
    tolerance: float = 14.0,
) -> DragHandle | None:
    """Handle under the pixel position (px, py); corners win over the body."""
    best: tuple[float, DragHandle] | None = None
    for handle in CORNERS:
        hx, hy = bounds.to_pixels(*rect.corner(handle))
        distance = math.hypot(px - hx, py - hy)
        if distance <= tolerance and (best is None or distance < best[0]):
            best = (distance, handle)
    if best is not None:
        return best[1]
    if bounds.width <= 0 or bounds.height <= 0:
        return None
    if rect.contains(*bounds.to_normalized(px, py)):
        return DragHandle.MOVE
    return None


def crop_box(rect: OverlayRect, width: int, height: int) -> tuple[int, int, int, int]:
    """Pixel (x, y, width, height) of ``rect`` on a frame of the given size."""
    return (
        round_half_up(rect.x * width),
        round_half_up(rect.y * height),
        max(1, round_half_up(rect.width * width)),
        max(1, round_half_up(rect.height * height)),
    )


def annotation_position(rect: OverlayRect, center_x: float, center_y: float) -> tuple[float, float]:
    """Map a crop-relative center onto frame-normalized coordinates."""
    return rect.x + center_x * rect.width, rect.y + center_y * rect.height


def fit_bounds(frame_w: int, frame_h: int, canvas_w: int, canvas_h: int) -> ContainerBounds:
    """Largest aspect-preserving box for a frame, centered on the canvas."""
    scale = min(canvas_w / frame_w, canvas_h / frame_h)
    fit_w = max(1, int(frame_w * scale))
    fit_h = max(1, int(frame_h * scale))
    return ContainerBounds(
        left=(canvas_w - fit_w) // 2,
        top=(canvas_h - fit_h) // 2,
        width=fit_w,
        height=fit_h,
    )
