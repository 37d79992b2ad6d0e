import json

import numpy as np
import pytest

from target_vision.camera import FrameSourceClosed
from target_vision.config import PipelineConfig
from target_vision.live_tuning import RuntimeParamWatcher
from target_vision.pipeline import VisionPipeline
from target_vision.processor import VisionProcessor
from target_vision.telemetry import MemoryTelemetry

from conftest import GREEN, make_frame


class ListSource:
    """Yields the given items in order; exceptions in the list are raised."""

    def __init__(self, items):
        self.items = list(items)
        self.calls = 0

    def next_frame(self, timeout=None):
        self.calls += 1
        if not self.items:
            raise FrameSourceClosed("done")
        item = self.items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def test_run_publishes_every_frame_until_source_closes(sharp_config):
    frames = [make_frame((190, 85, 20, 20, GREEN)), TimeoutError(), make_frame()]
    store = MemoryTelemetry()
    proc = VisionProcessor(ListSource(frames), VisionPipeline(sharp_config), store)

    proc.run()

    assert store.updates == 2
    assert store.entries() == {"val": 0, "tx": 0, "ty": 0, "ta": 0}
    assert store.latest_frame().shape == frames[2].shape
    stats = proc.stats()
    assert stats["total_frames"] == 2
    assert stats["frames_with_target"] == 1


def test_process_frame_returns_pipeline_output(sharp_config):
    store = MemoryTelemetry()
    proc = VisionProcessor(ListSource([]), VisionPipeline(sharp_config), store)
    out = proc.process_frame(make_frame((190, 85, 20, 20, GREEN)))

    assert (out.result.tx, out.result.ty, out.result.ta) == (40, -25, 400)
    assert store.get("val") == 1
    assert store.latest_frame() is out.annotated


def test_worker_thread_runs_and_finishes(sharp_config):
    store = MemoryTelemetry()
    frames = [make_frame((10, 10, 20, 20, GREEN)) for _ in range(3)]
    proc = VisionProcessor(ListSource(frames), VisionPipeline(sharp_config), store).start()

    assert proc.join(timeout=5.0)
    assert not proc.is_running()
    assert proc.error is None
    assert store.updates == 3


def test_stop_ends_the_loop(sharp_config):
    class Endless:
        def next_frame(self, timeout=None):
            return make_frame()

    store = MemoryTelemetry()
    proc = VisionProcessor(Endless(), VisionPipeline(sharp_config), store).start()
    proc.stop()
    assert proc.join(timeout=5.0)
    assert proc.error is None


def test_pipeline_failure_is_fatal_and_recorded(sharp_config):
    class Broken(VisionPipeline):
        def process(self, frame):
            raise RuntimeError("mask failure")

    proc = VisionProcessor(ListSource([make_frame()]), Broken(sharp_config), MemoryTelemetry())
    with pytest.raises(RuntimeError):
        proc.run()

    proc = VisionProcessor(ListSource([make_frame()]), Broken(sharp_config), MemoryTelemetry()).start()
    assert proc.join(timeout=5.0)
    assert isinstance(proc.error, RuntimeError)


def test_live_tuning_swaps_config_between_cycles(sharp_config):
    class OneShotWatcher:
        def __init__(self):
            self.pending = True

        def maybe_reload(self):
            was, self.pending = self.pending, False
            return was

        def apply(self, base):
            return PipelineConfig(color_range=base.color_range, blur_kernel=1, min_area=500)

    store = MemoryTelemetry()
    pipe = VisionPipeline(sharp_config)
    proc = VisionProcessor(ListSource([]), pipe, store, watcher=OneShotWatcher())

    out = proc.process_frame(make_frame((190, 85, 20, 20, GREEN)))

    assert pipe.config.min_area == 500
    assert out.result.count == 0


def test_tuning_file_present_at_startup_applies_to_first_frame(tmp_path, sharp_config):
    path = tmp_path / "runtime_params.json"
    path.write_text(json.dumps({"min_area": 500}), encoding="utf-8")

    pipe = VisionPipeline(sharp_config)
    proc = VisionProcessor(ListSource([]), pipe, MemoryTelemetry(), watcher=RuntimeParamWatcher(path))
    out = proc.process_frame(make_frame((190, 85, 20, 20, GREEN)))

    assert pipe.config.min_area == 500
    assert pipe.config.blur_kernel == 1
    assert out.result.count == 0
