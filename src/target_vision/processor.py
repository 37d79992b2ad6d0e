# processor.py
"""Glue logic that wires frame source → pipeline → telemetry on one worker thread."""
import logging
import threading
import time
from typing import Dict, Optional

import numpy as np

from target_vision.camera import FrameSourceClosed
from target_vision.common import PipelineOutput
from target_vision.live_tuning import RuntimeParamWatcher
from target_vision.pipeline import VisionPipeline
from target_vision.telemetry import TelemetryPublisher

logger = logging.getLogger(__name__)


class VisionProcessor:
    """
    The main loop.

    ``source`` is anything with ``next_frame(timeout)`` that blocks for the
    newest frame, raises ``TimeoutError`` when the timeout elapses and
    :class:`FrameSourceClosed` once the device is gone (see
    :class:`target_vision.camera.LatestFrameSource`).
    """

    def __init__(
        self,
        source,
        pipeline: VisionPipeline,
        publisher: TelemetryPublisher,
        watcher: Optional[RuntimeParamWatcher] = None,
        *,
        poll_timeout_s: float = 0.5,
        stats_interval_s: float = 5.0,
    ):
        self.source = source
        self.pipeline = pipeline
        self.publisher = publisher
        self.watcher = watcher
        self.poll_timeout_s = poll_timeout_s
        self.stats_interval_s = stats_interval_s

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None

        # Runtime metrics
        self.total_frames = 0
        self.frames_with_target = 0
        self.frame_count = 0
        self.proc_time_sum = 0.0
        self.fps_timer_start = time.time()
        self.disp_fps = 0.0
        self.disp_proc_ms_avg = 0.0

        if watcher is not None:
            # A tuning file present at start-up applies from the first frame.
            self._apply_tuning()

    # ---------------------------------------------------------------------
    #                          Per-frame work
    # ---------------------------------------------------------------------
    def _maybe_retune(self) -> None:
        if self.watcher is None or not self.watcher.maybe_reload():
            return
        self._apply_tuning()

    def _apply_tuning(self) -> None:
        cfg = self.watcher.apply(self.pipeline.config)
        if cfg is not None:
            self.pipeline.update_config(cfg)

    def process_frame(self, frame: np.ndarray) -> PipelineOutput:
        """Run one full cycle on ``frame`` and publish the outcome."""
        self._maybe_retune()

        tic = time.perf_counter()
        out = self.pipeline.process(frame)
        proc_ms = (time.perf_counter() - tic) * 1000.0

        self.publisher.publish(out.result, out.annotated)
        self._update_stats(proc_ms, out.result.has_target)
        return out

    def _update_stats(self, proc_ms: float, has_target: bool) -> None:
        self.total_frames += 1
        if has_target:
            self.frames_with_target += 1
        self.frame_count += 1
        self.proc_time_sum += proc_ms

        now = time.time()
        elapsed = now - self.fps_timer_start
        if elapsed >= self.stats_interval_s:
            self.disp_fps = self.frame_count / elapsed
            self.disp_proc_ms_avg = self.proc_time_sum / self.frame_count
            logger.info("FPS %.1f, proc %.1f ms avg", self.disp_fps, self.disp_proc_ms_avg)
            self.frame_count = 0
            self.proc_time_sum = 0.0
            self.fps_timer_start = now

    def stats(self) -> Dict[str, float]:
        return {
            "total_frames": self.total_frames,
            "frames_with_target": self.frames_with_target,
            "fps": self.disp_fps,
            "proc_ms_avg": self.disp_proc_ms_avg,
        }

    # ---------------------------------------------------------------------
    #                             Main loop
    # ---------------------------------------------------------------------
    def run(self) -> None:
        """Loop on the calling thread until stopped or the source closes."""
        logger.info("Vision loop started")
        try:
            while not self._stop.is_set():
                try:
                    frame = self.source.next_frame(timeout=self.poll_timeout_s)
                except TimeoutError:
                    continue
                self.process_frame(frame)
        except FrameSourceClosed:
            logger.warning("Frame source closed; vision loop exiting")
        finally:
            logger.info("Vision loop stopped after %d frame(s)", self.total_frames)

    def _run_thread(self) -> None:
        try:
            self.run()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Vision loop failed")
            self.error = exc

    def start(self) -> "VisionProcessor":
        if self._thread is None:
            self._thread = threading.Thread(target=self._run_thread, name="vision", daemon=True)
            self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker; True once it has finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
