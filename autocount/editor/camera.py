import logging
from dataclasses import dataclass

import cv2
import numpy as np

from autocount.config import settings

logger = logging.getLogger(__name__)


class CameraError(RuntimeError):
    pass


@dataclass
class CameraDevice:
    device_id: int
    label: str


class CameraSource:
    """A single open capture device.

    ``device_id=None`` opens the configured preferred (rear) camera.
    """

    def __init__(self, device_id: int | None = None) -> None:
        index = settings.camera_index if device_id is None else device_id
        self.cap = cv2.VideoCapture(index)
        if not self.cap.isOpened():
            self.cap.release()
            raise CameraError("Unable to access camera. Check permissions and try again.")
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, settings.camera_width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, settings.camera_height)
        self.device_id = index
        self.paused = False
        self._last_frame: np.ndarray | None = None

    @property
    def width(self) -> int:
        return int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)

    @property
    def height(self) -> int:
        return int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)

    def read(self) -> np.ndarray | None:
        # A paused stream stays open and keeps showing its last frame.
        if self.paused:
            return self._last_frame
        ok, frame = self.cap.read()
        if not ok:
            return None
        self._last_frame = frame
        return frame

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def close(self) -> None:
        self.cap.release()


def list_devices(active: int | None = None, limit: int | None = None) -> list[CameraDevice]:
    """Try device indices for cameras that can be opened."""
    limit = settings.camera_scan_limit if limit is None else limit
    devices: list[CameraDevice] = []
    for index in range(limit):
        # The active device is busy and may refuse a second handle.
        if index == active:
            devices.append(CameraDevice(device_id=index, label=f"Camera {index + 1}"))
            continue
        cap = cv2.VideoCapture(index)
        try:
            if cap.isOpened():
                devices.append(CameraDevice(device_id=index, label=f"Camera {index + 1}"))
        finally:
            cap.release()
    return devices
