# camera.py
"""Thin VideoCapture wrapper plus a newest-frame-wins capture thread."""
from __future__ import annotations

import logging
import subprocess
import threading
import time
from typing import Iterator, Optional, Tuple

import cv2
import numpy as np

from target_vision.config import CameraConfig

logger = logging.getLogger(__name__)


class FrameSourceClosed(RuntimeError):
    """The capture device is gone and no further frames will arrive."""


class Camera:
    def __init__(self, config: CameraConfig) -> None:
        self.config = config
        self.cap: Optional[cv2.VideoCapture] = None

        # Exposed runtime-queryable values
        self.actual_width: int = 0
        self.actual_height: int = 0
        self.actual_fps: float = 0.0
        self.actual_fourcc_str: str = ""

    # ------------------------------------------------------------------ #
    #   I N T E R N A L   H E L P E R S
    # ------------------------------------------------------------------ #
    @staticmethod
    def _get_fourcc_str(fourcc_val: int) -> str:
        if fourcc_val == 0:
            return ""
        return "".join(chr((fourcc_val >> (8 * i)) & 0xFF) for i in range(4))

    @staticmethod
    def _fourcc_for(pixel_format: str) -> str:
        # The config file speaks in cscore names, OpenCV wants FOURCCs.
        aliases = {"MJPEG": "MJPG", "GRAY": "GREY"}
        code = aliases.get(pixel_format.upper(), pixel_format.upper())
        return code.ljust(4)[:4]

    def _set_v4l2_ctrl(self, name: str, value: float) -> None:
        """Best-effort fallback for controls OpenCV has no property for."""
        path = self.config.path
        node = f"/dev/video{path}" if isinstance(path, int) else str(path)
        cmd = ["v4l2-ctl", "-d", node, "--set-ctrl", f"{name}={int(value)}"]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
            logger.debug("v4l2-ctl set-ctrl %s=%s", name, value)
        except FileNotFoundError:
            logger.warning("v4l2-ctl not installed; skipping %s", name)
        except subprocess.CalledProcessError as exc:
            logger.warning("v4l2-ctl error: %s", exc.stderr.decode().strip())

    def _apply_white_balance(self) -> None:
        wb = self.config.white_balance
        if wb is None:
            return
        if isinstance(wb, str) and wb.lower() == "auto":
            self.cap.set(cv2.CAP_PROP_AUTO_WB, 1)
        elif isinstance(wb, str) and wb.lower() == "hold":
            self.cap.set(cv2.CAP_PROP_AUTO_WB, 0)
        else:
            self.cap.set(cv2.CAP_PROP_AUTO_WB, 0)
            self.cap.set(cv2.CAP_PROP_WB_TEMPERATURE, float(wb))

    def _apply_exposure(self) -> None:
        # V4L2 convention: 1 = manual, 3 = aperture-priority auto
        exp = self.config.exposure
        if exp is None:
            return
        if isinstance(exp, str) and exp.lower() == "auto":
            self.cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, 3)
        elif isinstance(exp, str) and exp.lower() == "hold":
            self.cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, 1)
        else:
            self.cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, 1)
            # absolute exposure must come *after* the mode
            self.cap.set(cv2.CAP_PROP_EXPOSURE, float(exp))

    def _apply_properties(self) -> None:
        for name, value in self.config.properties.items():
            prop = getattr(cv2, "CAP_PROP_" + name.upper().replace(" ", "_"), None)
            if prop is None:
                self._set_v4l2_ctrl(name, value)
            else:
                self.cap.set(prop, float(value))

    # ------------------------------------------------------------------ #
    #   P U B L I C   A P I
    # ------------------------------------------------------------------ #
    def open(self) -> bool:
        """Open the device and apply format, resolution and image controls."""
        logger.info("Starting camera '%s' on %s", self.config.name, self.config.path)
        self.cap = cv2.VideoCapture(self.config.path)
        if not self.cap or not self.cap.isOpened():
            logger.error("Could not open device %s", self.config.path)
            self.cap = None
            return False

        # -------- core settings (fourcc / res / fps) ------------------
        if self.config.pixel_format:
            self.cap.set(
                cv2.CAP_PROP_FOURCC,
                cv2.VideoWriter_fourcc(*self._fourcc_for(self.config.pixel_format)),
            )
        if self.config.width:
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        if self.config.height:
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        if self.config.fps:
            self.cap.set(cv2.CAP_PROP_FPS, self.config.fps)

        # -------- image controls --------------------------------------
        if self.config.brightness is not None:
            self.cap.set(cv2.CAP_PROP_BRIGHTNESS, self.config.brightness)
        self._apply_white_balance()
        self._apply_exposure()
        self._apply_properties()

        time.sleep(0.1)  # Let driver settle

        # -------- query what we actually got --------------------------
        self.actual_fourcc_str = self._get_fourcc_str(
            int(self.cap.get(cv2.CAP_PROP_FOURCC))
        )
        self.actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.actual_fps = self.cap.get(cv2.CAP_PROP_FPS)

        logger.info(
            "Camera '%s': %dx%d@%.1f FPS (FOURCC='%s')",
            self.config.name,
            self.actual_width,
            self.actual_height,
            self.actual_fps,
            self.actual_fourcc_str,
        )
        if self.actual_width == 0 or self.actual_height == 0:
            logger.error("Camera returned zero resolution")
            self.release()
            return False
        return True

    def read(self) -> Tuple[float, Optional[np.ndarray]]:
        if not self.is_opened():
            return time.time(), None
        ts = time.time()
        ret, frame = self.cap.read()
        return (ts, frame) if ret and frame is not None else (ts, None)

    def is_opened(self) -> bool:
        return bool(self.cap and self.cap.isOpened())

    def release(self) -> None:
        if self.cap:
            logger.info("Releasing capture device %s", self.config.path)
            self.cap.release()
            self.cap = None

    def get_properties(self) -> Tuple[int, int, float, str]:
        return (
            self.actual_width,
            self.actual_height,
            self.actual_fps,
            self.actual_fourcc_str,
        )


class LatestFrameSource:
    """
    Runs ``camera.read()`` on its own thread and keeps only the newest frame.

    ``next_frame()`` blocks until a frame the caller has not seen yet is
    available; frames that arrive while the caller is busy overwrite each
    other and are never queued. When the device stops delivering and cannot
    be reopened within ``max_reopens`` attempts the source closes and
    ``next_frame()`` raises :class:`FrameSourceClosed`.
    """

    def __init__(
        self,
        camera,
        max_reopens: int = 5,
        retry_delay_s: float = 0.5,
        close_timeout_s: float = 2.0,
    ) -> None:
        self.camera = camera
        self.max_reopens = max_reopens
        self.retry_delay_s = retry_delay_s
        self.close_timeout_s = close_timeout_s

        self._cond = threading.Condition()
        self._frame: Optional[np.ndarray] = None
        self._timestamp = 0.0
        self._seq = 0
        self._delivered = 0
        self._closed = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.frames_captured = 0
        self.frames_dropped = 0

    # ---------------- Capture thread ----------------
    def start(self) -> "LatestFrameSource":
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="capture", daemon=True)
            self._thread.start()
        return self

    def _run(self) -> None:
        reopens = 0
        try:
            while not self._stop.is_set():
                ts, frame = self.camera.read()
                if frame is None:
                    if self._stop.is_set():
                        break
                    if reopens >= self.max_reopens:
                        logger.error("Camera stopped delivering frames; giving up after %d reopen(s)", reopens)
                        break
                    reopens += 1
                    logger.warning("Frame grab failed, reopening camera (%d/%d)", reopens, self.max_reopens)
                    self.camera.release()
                    if not self.camera.open():
                        self._stop.wait(self.retry_delay_s)
                    continue

                reopens = 0
                with self._cond:
                    if self._seq != self._delivered:
                        self.frames_dropped += 1
                    self._frame = frame
                    self._timestamp = ts
                    self._seq += 1
                    self.frames_captured += 1
                    self._cond.notify_all()
        finally:
            # Once started, only this thread touches the device.
            self.camera.release()
            with self._cond:
                self._closed = True
                self._cond.notify_all()

    # ------------------ Consumer API -----------------
    def next_frame(self, timeout: Optional[float] = None) -> np.ndarray:
        return self.next_timestamped_frame(timeout)[1]

    def next_timestamped_frame(self, timeout: Optional[float] = None) -> Tuple[float, np.ndarray]:
        """Block for the newest undelivered frame. ``TimeoutError`` if ``timeout`` elapses first."""
        with self._cond:
            while self._seq == self._delivered:
                if self._closed:
                    raise FrameSourceClosed("frame source closed")
                if not self._cond.wait(timeout):
                    raise TimeoutError("no frame within %.3f s" % timeout)
            self._delivered = self._seq
            return self._timestamp, self._frame

    def __iter__(self) -> Iterator[np.ndarray]:
        while True:
            try:
                yield self.next_frame()
            except FrameSourceClosed:
                return

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def close(self) -> None:
        self._stop.set()
        if self._thread is None:
            self.camera.release()
        elif self._thread is not threading.current_thread():
            self._thread.join(timeout=self.close_timeout_s)
            if self._thread.is_alive():
                logger.warning("Capture thread still inside read(); it releases the camera when the read returns")
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __enter__(self) -> "LatestFrameSource":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
