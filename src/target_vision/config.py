# config.py
"""Typed configuration blobs for the whole system, plus the JSON loader."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "/boot/frc.json"

HSVTriple = Tuple[int, int, int]


class ConfigError(ValueError):
    """Raised when a configuration file or value cannot be used."""


class AspectRatioMode(str, Enum):
    REAL = "real"          # width / height as a float
    TRUNCATE = "truncate"  # whole-number division, legacy behaviour


class LostTargetPolicy(str, Enum):
    RESET = "reset"  # tx = ty = 0 when nothing qualifies
    HOLD = "hold"    # keep the last published offsets


# ---------------------- Vision ----------------------
@dataclass(frozen=True)
class ColorRange:
    """Inclusive HSV bounds on OpenCV's scale (H 0-179, S/V 0-255)."""
    low: HSVTriple = (30, 80, 80)
    high: HSVTriple = (55, 255, 255)

    def __post_init__(self) -> None:
        limits = (179, 255, 255)
        for name, triple in (("low", self.low), ("high", self.high)):
            if len(triple) != 3:
                raise ConfigError(f"{name} must have three components, got {triple!r}")
            for value, top in zip(triple, limits):
                if not 0 <= value <= top:
                    raise ConfigError(f"{name} component {value} outside 0..{top}")
        if any(lo > hi for lo, hi in zip(self.low, self.high)):
            raise ConfigError(f"low {self.low} exceeds high {self.high}")


@dataclass(frozen=True)
class PipelineConfig:
    color_range: ColorRange = field(default_factory=ColorRange)
    blur_kernel: int = 13                # odd, square
    min_area: int = 60                   # px², bounding-box area
    aspect_min: float = 0.9
    aspect_max: float = 1.1
    aspect_mode: AspectRatioMode = AspectRatioMode.REAL
    lost_target: LostTargetPolicy = LostTargetPolicy.RESET
    box_color_bgr: Tuple[int, int, int] = (0, 0, 255)
    box_thickness: int = 2

    def __post_init__(self) -> None:
        if self.blur_kernel < 1 or self.blur_kernel % 2 == 0:
            raise ConfigError(f"blur_kernel must be a positive odd number, got {self.blur_kernel}")
        if self.min_area < 0:
            raise ConfigError(f"min_area must be >= 0, got {self.min_area}")
        if self.aspect_min > self.aspect_max:
            raise ConfigError(
                f"aspect band [{self.aspect_min}, {self.aspect_max}] is empty"
            )


# ---------------------- Camera ----------------------
@dataclass
class CameraConfig:
    name: str = "camera0"
    path: Union[int, str] = 0
    pixel_format: Optional[str] = None   # "MJPEG", "YUYV", ...
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[int] = None
    brightness: Optional[int] = None     # percent
    white_balance: Union[str, int, None] = None  # "auto", "hold" or a value
    exposure: Union[str, int, None] = None       # "auto", "hold" or a value
    properties: Dict[str, float] = field(default_factory=dict)
    max_reopens: int = 5


# --------------------- Telemetry --------------------
@dataclass
class TelemetryConfig:
    team: int = 0
    server: bool = False
    table: str = "datatable"
    stream_name: str = "Processed"


@dataclass
class StreamConfig:
    port: Optional[int] = None           # None disables the MJPEG server
    jpeg_quality: int = 80
    max_fps: float = 30.0


@dataclass
class SystemConfig:
    telemetry: TelemetryConfig
    cameras: List[CameraConfig]
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)


# ----------------------------------------------------------------------
#   Vision overrides (shared by the loader and live tuning)
# ----------------------------------------------------------------------
def _triple(value: Any, key: str) -> HSVTriple:
    try:
        h, s, v = (int(c) for c in value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a list of three integers") from exc
    return (h, s, v)


def apply_vision_overrides(base: PipelineConfig, params: Mapping[str, Any]) -> PipelineConfig:
    """Return a copy of *base* with the recognised keys of *params* applied."""
    color = base.color_range
    if "hsv_low" in params or "hsv_high" in params:
        color = ColorRange(
            low=_triple(params.get("hsv_low", color.low), "hsv_low"),
            high=_triple(params.get("hsv_high", color.high), "hsv_high"),
        )

    changes: Dict[str, Any] = {"color_range": color}
    try:
        if "blur_kernel" in params:
            changes["blur_kernel"] = int(params["blur_kernel"])
        if "min_area" in params:
            changes["min_area"] = int(params["min_area"])
        if "aspect_min" in params:
            changes["aspect_min"] = float(params["aspect_min"])
        if "aspect_max" in params:
            changes["aspect_max"] = float(params["aspect_max"])
        if "aspect_mode" in params:
            changes["aspect_mode"] = AspectRatioMode(str(params["aspect_mode"]).lower())
        if "lost_target" in params:
            changes["lost_target"] = LostTargetPolicy(str(params["lost_target"]).lower())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"bad vision parameter: {exc}") from exc
    return replace(base, **changes)


# ----------------------------------------------------------------------
#   File loader
# ----------------------------------------------------------------------
def _read_camera(cfg: Any, fail) -> CameraConfig:
    if not isinstance(cfg, dict):
        fail(f"camera entries must be JSON objects, got {cfg!r}")
    name = cfg.get("name")
    if name is None:
        fail("could not read camera name")
    path = cfg.get("path")
    if path is None:
        fail(f"camera '{name}': could not read path")

    props: Dict[str, float] = {}
    entries = cfg.get("properties", [])
    if not isinstance(entries, list):
        fail(f"camera '{name}': properties must be a list")
    for prop in entries:
        if not isinstance(prop, dict) or "name" not in prop or "value" not in prop:
            fail(f"camera '{name}': property entries need 'name' and 'value'")
        props[str(prop["name"])] = prop["value"]

    if "stream" in cfg:
        logger.warning("Ignoring stream settings of camera '%s': the camera server is not included", name)

    return CameraConfig(
        name=str(name),
        path=path,
        pixel_format=cfg.get("pixel format"),
        width=cfg.get("width"),
        height=cfg.get("height"),
        fps=cfg.get("fps"),
        brightness=cfg.get("brightness"),
        white_balance=cfg.get("white balance"),
        exposure=cfg.get("exposure"),
        properties=props,
    )


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_FILE) -> SystemConfig:
    """Parse the robot's JSON config file into a :class:`SystemConfig`."""
    path = Path(path)

    def fail(msg: str):
        raise ConfigError(f"config error in '{path}': {msg}")

    try:
        with path.open("r", encoding="utf-8") as fp:
            top = json.load(fp)
    except OSError as exc:
        raise ConfigError(f"could not open '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        fail(f"invalid JSON: {exc}")

    if not isinstance(top, dict):
        fail("must be JSON object")

    if "team" not in top:
        fail("could not read team number")
    try:
        team = int(top["team"])
    except (TypeError, ValueError):
        fail(f"team number {top['team']!r} is not an integer")

    server = False
    if "ntmode" in top:
        mode = str(top["ntmode"]).lower()
        if mode == "server":
            server = True
        elif mode != "client":
            fail(f"could not understand ntmode value '{top['ntmode']}'")

    if "cameras" not in top:
        fail("could not read cameras")
    if not isinstance(top["cameras"], list):
        fail("cameras must be a list")
    cameras = [_read_camera(c, fail) for c in top["cameras"]]

    switched_cameras = top.get("switched cameras", [])
    if not isinstance(switched_cameras, list):
        fail("switched cameras must be a list")
    for switched in switched_cameras:
        if not isinstance(switched, dict):
            fail(f"switched camera entries must be JSON objects, got {switched!r}")
        logger.warning(
            "Ignoring switched camera %r: camera switching is not supported",
            switched.get("name"),
        )

    pipeline = PipelineConfig()
    if "vision" in top:
        if not isinstance(top["vision"], dict):
            fail("vision must be a JSON object")
        try:
            pipeline = apply_vision_overrides(pipeline, top["vision"])
        except ConfigError as exc:
            fail(str(exc))

    return SystemConfig(
        telemetry=TelemetryConfig(team=team, server=server),
        cameras=cameras,
        pipeline=pipeline,
    )
