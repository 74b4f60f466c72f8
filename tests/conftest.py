import cv2
import numpy as np
import pytest

from autocount.imaging import to_data_url


@pytest.fixture
def png_data_url():
    def make(width: int, height: int, value: int = 90) -> str:
        image = np.full((height, width, 3), value, dtype=np.uint8)
        ok, encoded = cv2.imencode(".png", image)
        assert ok
        return to_data_url(encoded.tobytes())

    return make
