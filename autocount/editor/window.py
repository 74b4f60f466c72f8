import argparse
import asyncio
import logging

import cv2
import numpy as np

from autocount.editor.client import AutoCountClient
from autocount.editor.geometry import CORNERS, ContainerBounds, annotation_position, fit_bounds, hit_test
from autocount.editor.session import CaptureEditor
from autocount.imaging import decode_image

logger = logging.getLogger(__name__)

TARGET_W, TARGET_H = 1100, 850  # output canvas/window size
WINDOW = "AutoCount: click=freeze | drag zone | d=done r=retake c=camera q=quit"

ZONE_COLOR = (0, 200, 0)
MARKER_COLOR = (0, 140, 255)
TEXT_COLOR = (255, 255, 255)

KEY_NAMES = {13: "Enter", 10: "Enter", 32: " "}


def fit_frame(frame, canvas_w=TARGET_W, canvas_h=TARGET_H):
    """Draw ``frame`` centered on a black canvas; returns (canvas, bounds)."""
    frame_h, frame_w = frame.shape[:2]
    bounds = fit_bounds(frame_w, frame_h, canvas_w, canvas_h)
    left, top = int(bounds.left), int(bounds.top)
    fit_w, fit_h = int(bounds.width), int(bounds.height)

    if frame.ndim == 2:
        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    canvas = np.zeros((canvas_h, canvas_w, 3), dtype=np.uint8)
    canvas[top:top + fit_h, left:left + fit_w] = cv2.resize(frame, (fit_w, fit_h), interpolation=cv2.INTER_AREA)
    return canvas, bounds


def draw_zone(img, rect, bounds: ContainerBounds, annotations=()) -> None:
    """Draw the ROI, its corner handles and numbered item markers."""
    x0, y0 = bounds.to_pixels(rect.x, rect.y)
    x1, y1 = bounds.to_pixels(rect.right, rect.bottom)
    cv2.rectangle(img, (int(x0), int(y0)), (int(x1), int(y1)), ZONE_COLOR, 2)
    for handle in CORNERS:
        hx, hy = bounds.to_pixels(*rect.corner(handle))
        cv2.circle(img, (int(hx), int(hy)), 8, ZONE_COLOR, -1)

    for annotation in annotations:
        nx, ny = annotation_position(rect, annotation.center_x, annotation.center_y)
        px, py = bounds.to_pixels(nx, ny)
        cv2.circle(img, (int(px), int(py)), 12, MARKER_COLOR, -1)
        cv2.putText(img, annotation.label, (int(px) - 6, int(py) + 5),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.45, TEXT_COLOR, 1)


def status_lines(editor: CaptureEditor) -> list[str]:
    lines: list[str] = []
    if editor.error:
        lines.append(editor.error)
    if editor.is_counting:
        lines.append("Counting...")
    elif editor.count is not None:
        lines.append(f"Count: {editor.count}")
    if editor.count_error:
        lines.append(editor.count_error)
    if editor.advisory:
        lines.append(editor.advisory)
    if not lines:
        if editor.captured is None:
            lines.append("Click the preview (or press Enter) to freeze the frame")
        else:
            lines.append("Adjust the zone, then press d to count")
    return lines


class EditorWindow:
    def __init__(self, editor: CaptureEditor) -> None:
        self.editor = editor
        self.bounds: ContainerBounds | None = None
        self._count_task: asyncio.Task | None = None
        self._frozen_key = None
        self._frozen_image = None

    def _frame(self):
        editor = self.editor
        if editor.captured is not None:
            if self._frozen_key is not editor.captured:
                self._frozen_image = decode_image(editor.captured.png)
                self._frozen_key = editor.captured
            return self._frozen_image
        if editor.is_camera_ready and editor.camera is not None:
            return editor.camera.read()
        return None

    def on_mouse(self, event, x, y, flags, param) -> None:
        editor = self.editor
        if event == cv2.EVENT_LBUTTONDOWN:
            if editor.captured is None:
                if editor.is_camera_ready:
                    editor.handle_preview_tap()
                else:
                    editor.retry_camera()
                return
            if self.bounds is not None:
                editor.pointer_down(hit_test(editor.overlay, self.bounds, x, y), x, y, self.bounds)
        elif event == cv2.EVENT_MOUSEMOVE:
            # A button-up that happened outside the window never reaches us.
            if not flags & cv2.EVENT_FLAG_LBUTTON:
                editor.end_drag()
                return
            editor.pointer_move(x, y)
        elif event == cv2.EVENT_LBUTTONUP:
            editor.pointer_up()

    def handle_key(self, key: int) -> bool:
        """Apply a key press; False means quit."""
        editor = self.editor
        if key in (ord("q"), 27):
            return False
        if key in KEY_NAMES:
            editor.handle_key(KEY_NAMES[key])
        elif key == ord("d"):
            if editor.captured is not None and not editor.is_counting:
                self._count_task = asyncio.create_task(editor.count_items())
        elif key == ord("r"):
            editor.retake()
        elif key == ord("c"):
            editor.cycle_camera()
        return True

    def render(self):
        frame = self._frame()
        if frame is None:
            canvas = np.zeros((TARGET_H, TARGET_W, 3), dtype=np.uint8)
            self.bounds = None
        else:
            canvas, self.bounds = fit_frame(frame)
            if self.editor.captured is not None:
                draw_zone(canvas, self.editor.overlay, self.bounds, self.editor.annotations)

        for i, line in enumerate(status_lines(self.editor)):
            cv2.putText(canvas, line, (20, 40 + 35 * i),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.8, TEXT_COLOR, 2)
        return canvas

    async def run(self) -> None:
        cv2.namedWindow(WINDOW, cv2.WINDOW_NORMAL)
        cv2.resizeWindow(WINDOW, TARGET_W, TARGET_H)
        cv2.setMouseCallback(WINDOW, self.on_mouse)
        try:
            while True:
                cv2.imshow(WINDOW, self.render())
                key = cv2.waitKey(16) & 0xFF
                if key != 0xFF and not self.handle_key(key):
                    break
                # Lets an in-flight count make progress between frames.
                await asyncio.sleep(0)
        finally:
            if self._count_task is not None and not self._count_task.done():
                self._count_task.cancel()
                await asyncio.gather(self._count_task, return_exceptions=True)
            self.editor.close()
            cv2.destroyAllWindows()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="AutoCount capture editor")
    parser.add_argument("--camera", type=int, default=None, help="camera device index")
    parser.add_argument("--url", default=None, help="detection proxy URL")
    parser.add_argument("--notes", default=None, help="operator notes sent with each count")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    editor = CaptureEditor(client=AutoCountClient(url=args.url), notes=args.notes)
    editor.start_camera(args.camera)
    asyncio.run(EditorWindow(editor).run())


if __name__ == "__main__":
    main()
