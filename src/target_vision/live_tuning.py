# live_tuning.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from target_vision.config import ConfigError, PipelineConfig, apply_vision_overrides

logger = logging.getLogger(__name__)


class RuntimeParamWatcher:
    """
    Watch a JSON file of vision parameters and hot-reload it when it changes.

    The file uses the same keys as the ``vision`` section of the main config
    (``hsv_low``, ``hsv_high``, ``blur_kernel``, ``min_area``, ...).
    """

    def __init__(self, path: str | Path = "runtime_params.json") -> None:
        self.path = Path(path).expanduser().resolve()
        self._stamp: Tuple[float, int] = (0.0, -1)  # (mtime, size)
        self.params: Dict[str, Any] = {}

        logger.info("Watching %s for vision parameters", self.path)
        self._load(initial=True)

    # ------------------------------------------------------------------
    #   Internal helpers
    # ------------------------------------------------------------------
    def _load(self, *, initial: bool = False) -> bool:
        try:
            with self.path.open("r", encoding="utf-8") as fp:
                params = json.load(fp)
            stat = self.path.stat()
            self._stamp = (stat.st_mtime, stat.st_size)
        except FileNotFoundError:
            if initial:
                logger.info("%s not found; live tuning idle until it is created", self.path)
            else:
                logger.warning("%s was deleted; keeping old params", self.path)
            return False
        except json.JSONDecodeError as exc:
            logger.error("JSON error in %s: %s", self.path, exc)
            return False

        if not isinstance(params, dict):
            logger.error("%s must contain a JSON object", self.path)
            return False
        self.params = params
        if not initial:
            logger.info("Reloaded parameters from %s", self.path)
        return True

    # ------------------------------------------------------------------
    #   Public API
    # ------------------------------------------------------------------
    def maybe_reload(self) -> bool:
        """
        If the watched file changed since the last call reload it and
        return **True**, else return **False**.
        """
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return False

        mtime, fsize = self._stamp
        # Some filesystems only update timestamps in 1- or 2-second ticks,
        # so any change >=1 s *or* a size change counts as "modified".
        if stat.st_size != fsize or stat.st_mtime - mtime >= 1.0:
            if not self._load():
                # Don't retry a broken file every frame.
                self._stamp = (stat.st_mtime, stat.st_size)
                return False
            return True
        return False

    def apply(self, base: PipelineConfig) -> Optional[PipelineConfig]:
        """New config with the current params on top of ``base``, or None if they are invalid."""
        try:
            return apply_vision_overrides(base, self.params)
        except ConfigError as exc:
            logger.error("Ignoring tuning file %s: %s", self.path, exc)
            return None

    def get(self, key: str, default: Any | None = None) -> Any:
        return self.params.get(key, default)
