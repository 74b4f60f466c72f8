import logging
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Callable, Iterator

import numpy as np

from autocount.config import settings
from autocount.editor.camera import CameraDevice, CameraError, CameraSource, list_devices
from autocount.editor.client import Annotation, AutoCountClient, CountError, DetectionResult
from autocount.editor.fallback import count_locally
from autocount.editor.geometry import ContainerBounds, DragHandle, OverlayRect, apply_drag, crop_box
from autocount.imaging import ImageError, crop_image, decode_image, encode_png, to_data_url

logger = logging.getLogger(__name__)

CAMERA_UNAVAILABLE = "Unable to access camera. Check permissions and try again."
NOT_READY = "Camera not ready yet. Give it another second."
NO_PARTS = "AutoCount did not detect any parts. Try retaking the photo or adjusting the zone."
NO_MARKERS = "AutoCount returned a count but no marker positions. Try retaking the photo."
COUNT_FAILED = "Unable to count items in this capture."

CAPTURE_KEYS = {"Enter", " "}


@dataclass(frozen=True)
class CapturedFrame:
    png: bytes
    width: int
    height: int


@dataclass(frozen=True)
class DragState:
    handle: DragHandle
    start_pointer: tuple[float, float]
    start_rect: OverlayRect
    bounds: ContainerBounds


class CaptureEditor:
    """Capture, ROI editing and counting state for one AutoCount screen.

    UI-independent: a window layer feeds it pointer and key events and reads
    its attributes to render. Every user-visible failure ends up in ``error``
    (camera/capture) or ``count_error`` (counting); ``advisory`` carries the
    non-fatal empty-result hints.
    """

    def __init__(
        self,
        client: AutoCountClient | None = None,
        camera_factory: Callable[[int | None], CameraSource] = CameraSource,
        device_lister: Callable[[int | None], list[CameraDevice]] = list_devices,
        local_fallback: bool | None = None,
        notes: str | None = None,
    ) -> None:
        self._client = client or AutoCountClient()
        self._camera_factory = camera_factory
        self._device_lister = device_lister
        self._local_fallback = settings.local_fallback if local_fallback is None else local_fallback
        self.notes = notes

        self.camera: CameraSource | None = None
        self.devices: list[CameraDevice] = []
        self.selected_device_id: int | None = None
        self.is_camera_ready = False
        self.is_camera_switching = False
        self.error: str | None = None

        self.captured: CapturedFrame | None = None
        self.overlay = OverlayRect()
        self.drag_state: DragState | None = None

        self.is_counting = False
        self.count: int | None = None
        self.count_error: str | None = None
        self.advisory: str | None = None
        self.annotations: list[Annotation] = []

        self._pointer_listeners: list[Callable[[float, float], None]] = []
        self._drag_scope: ExitStack | None = None
        self._frame_generation = 0

    # Camera

    def start_camera(self, device_id: int | None = None) -> bool:
        self.is_camera_switching = True
        self.error = None
        self.is_camera_ready = False
        self._discard_capture()
        self._release_camera()
        try:
            camera = self._camera_factory(device_id)
        except CameraError as exc:
            logger.error("Camera error: %s", exc)
            self.error = str(exc) or CAMERA_UNAVAILABLE
            return False
        except Exception as exc:
            logger.error("Camera error: %s", exc)
            self.error = CAMERA_UNAVAILABLE
            return False
        finally:
            self.is_camera_switching = False

        self.camera = camera
        # Trust what was actually opened over what was asked for.
        resolved = getattr(camera, "device_id", None)
        self.selected_device_id = resolved if resolved is not None else device_id
        try:
            self.devices = self._device_lister(self.selected_device_id)
        except Exception as exc:
            logger.warning("Unable to enumerate cameras: %s", exc)
        self.is_camera_ready = True
        return True

    def retry_camera(self) -> bool:
        return self.start_camera(self.selected_device_id)

    def retake(self) -> bool:
        return self.start_camera(self.selected_device_id)

    def switch_camera(self, device_id: int | None) -> bool:
        if device_id is None or device_id == self.selected_device_id:
            return False
        self.selected_device_id = device_id
        return self.start_camera(device_id)

    def cycle_camera(self) -> bool:
        if len(self.devices) < 2:
            return False
        ids = [device.device_id for device in self.devices]
        try:
            position = ids.index(self.selected_device_id)
        except ValueError:
            position = -1
        return self.switch_camera(ids[(position + 1) % len(ids)])

    def close(self) -> None:
        self.end_drag()
        self._release_camera()
        self.is_camera_ready = False

    def _release_camera(self) -> None:
        camera, self.camera = self.camera, None
        if camera is not None:
            camera.close()

    # Capture

    @property
    def can_capture(self) -> bool:
        return (
            self.captured is None
            and self.is_camera_ready
            and not self.is_counting
            and not self.is_camera_switching
        )

    def request_capture(self) -> bool:
        if not self.can_capture:
            return False
        return self._capture()

    def handle_preview_tap(self) -> bool:
        return self.request_capture()

    def handle_key(self, key: str) -> bool:
        if key not in CAPTURE_KEYS:
            return False
        return self.request_capture()

    def _capture(self) -> bool:
        frame = self.camera.read() if self.camera is not None else None
        if frame is None or frame.ndim < 2 or not frame.shape[0] or not frame.shape[1]:
            self.error = NOT_READY
            return False
        height, width = frame.shape[:2]
        try:
            png = encode_png(frame)
        except ImageError as exc:
            logger.error("Capture failed: %s", exc)
            self.error = str(exc)
            return False

        self.captured = CapturedFrame(png=png, width=int(width), height=int(height))
        self._frame_generation += 1
        self.error = None
        self._clear_count()
        self.camera.pause()
        return True

    def _discard_capture(self) -> None:
        self.end_drag()
        self.captured = None
        self._frame_generation += 1
        self._clear_count()

    def _clear_count(self) -> None:
        self.count = None
        self.count_error = None
        self.advisory = None
        self.annotations = []

    # ROI editing

    @contextmanager
    def drag(self, handle: DragHandle, pointer: tuple[float, float], bounds: ContainerBounds) -> Iterator[DragState]:
        """Scope of one drag gesture.

        While open, every pointer move reaching the editor updates the overlay,
        wherever the pointer is. The listener and drag state are dropped on exit.
        """
        if self.captured is None:
            raise RuntimeError("ROI can only be edited on a frozen frame")
        if self.drag_state is not None:
            raise RuntimeError("A drag is already in progress")

        state = DragState(handle=handle, start_pointer=pointer, start_rect=self.overlay, bounds=bounds)
        listener = partial(self._drag_to, state)
        self.drag_state = state
        self._pointer_listeners.append(listener)
        try:
            yield state
        finally:
            self._pointer_listeners.remove(listener)
            if self.drag_state is state:
                self.drag_state = None

    def _drag_to(self, state: DragState, px: float, py: float) -> None:
        bounds = state.bounds
        if bounds.width <= 0 or bounds.height <= 0:
            return
        dx = (px - state.start_pointer[0]) / bounds.width
        dy = (py - state.start_pointer[1]) / bounds.height
        self.overlay = apply_drag(state.handle, state.start_rect, dx, dy)

    def pointer_down(self, handle: DragHandle | None, px: float, py: float, bounds: ContainerBounds) -> bool:
        if handle is None or self.captured is None or self._drag_scope is not None:
            return False
        scope = ExitStack()
        scope.enter_context(self.drag(handle, (px, py), bounds))
        self._drag_scope = scope
        return True

    def pointer_move(self, px: float, py: float) -> None:
        for listener in list(self._pointer_listeners):
            listener(px, py)

    def pointer_up(self) -> None:
        self.end_drag()

    def end_drag(self) -> None:
        scope, self._drag_scope = self._drag_scope, None
        if scope is not None:
            scope.close()

    # Counting

    def crop_payload(self) -> tuple[str, np.ndarray]:
        """PNG data URL of the ROI on the frozen frame, plus the cropped pixels."""
        if self.captured is None:
            raise ImageError("Nothing captured yet")
        frame = decode_image(self.captured.png)
        height, width = frame.shape[:2]
        crop = crop_image(frame, crop_box(self.overlay, width, height))
        return to_data_url(encode_png(crop)), crop

    async def count_items(self) -> bool:
        if self.captured is None or self.is_counting:
            return False
        generation = self._frame_generation
        self.is_counting = True
        self.count_error = None
        self.advisory = None
        try:
            data_url, crop = self.crop_payload()
            try:
                result = await self._client.count(data_url, notes=self.notes)
            except CountError as exc:
                if not self._local_fallback:
                    raise
                logger.warning("AutoCount inference failed, falling back to local detection: %s", exc)
                result = count_locally(crop)
        except Exception as exc:
            logger.error("AutoCount failed: %s", exc)
            if generation == self._frame_generation:
                self.count = None
                self.annotations = []
                self.count_error = str(exc) or COUNT_FAILED
            return False
        finally:
            self.is_counting = False

        if generation != self._frame_generation:
            logger.info("Discarding AutoCount result for a replaced frame")
            return False
        self._apply_result(result)
        return True

    def _apply_result(self, result: DetectionResult) -> None:
        self.count = result.count
        self.annotations = list(result.annotations)
        if result.advisory:
            self.advisory = result.advisory
        elif result.count == 0:
            self.advisory = NO_PARTS
        elif not self.annotations:
            self.advisory = NO_MARKERS
        else:
            self.advisory = None
