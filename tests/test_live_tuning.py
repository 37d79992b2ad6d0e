import json
import os

from target_vision.config import PipelineConfig
from target_vision.live_tuning import RuntimeParamWatcher


def test_missing_file_is_idle(tmp_path):
    watcher = RuntimeParamWatcher(tmp_path / "runtime_params.json")
    assert watcher.params == {}
    assert watcher.maybe_reload() is False
    assert watcher.apply(PipelineConfig()) == PipelineConfig()


def test_reload_after_change(tmp_path):
    path = tmp_path / "runtime_params.json"
    path.write_text(json.dumps({"min_area": 80}), encoding="utf-8")

    watcher = RuntimeParamWatcher(path)
    assert watcher.get("min_area") == 80
    assert watcher.maybe_reload() is False

    path.write_text(json.dumps({"min_area": 120, "hsv_low": [20, 50, 50]}), encoding="utf-8")
    assert watcher.maybe_reload() is True

    cfg = watcher.apply(PipelineConfig())
    assert cfg.min_area == 120
    assert cfg.color_range.low == (20, 50, 50)


def test_reload_detects_mtime_only_change(tmp_path):
    path = tmp_path / "runtime_params.json"
    path.write_text(json.dumps({"min_area": 80}), encoding="utf-8")
    watcher = RuntimeParamWatcher(path)

    path.write_text(json.dumps({"min_area": 90}), encoding="utf-8")
    st = path.stat()
    os.utime(path, (st.st_atime, st.st_mtime + 5))
    assert watcher.maybe_reload() is True
    assert watcher.get("min_area") == 90


def test_broken_json_keeps_old_params(tmp_path):
    path = tmp_path / "runtime_params.json"
    path.write_text(json.dumps({"min_area": 80}), encoding="utf-8")
    watcher = RuntimeParamWatcher(path)

    path.write_text("{not json at all", encoding="utf-8")
    assert watcher.maybe_reload() is False
    assert watcher.get("min_area") == 80
    # the broken file is not re-parsed on every call
    assert watcher.maybe_reload() is False


def test_invalid_values_are_ignored(tmp_path):
    path = tmp_path / "runtime_params.json"
    path.write_text(json.dumps({"blur_kernel": 8}), encoding="utf-8")
    watcher = RuntimeParamWatcher(path)
    assert watcher.apply(PipelineConfig()) is None
