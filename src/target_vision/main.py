# main.py
"""
Entry-point for the color-target vision service.

Reads the robot's JSON config (``/boot/frc.json`` unless given), starts the
telemetry outputs, opens the first camera and runs the vision loop until
the camera goes away or Ctrl-C.

Live-tuning
-----------
Pass ``--tuning runtime_params.json`` and edit that file while the program
runs; HSV bounds, blur kernel and filter limits take effect on the next
frame. See ``target_vision/live_tuning.py`` for details.
"""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional, Sequence

from target_vision.camera import Camera, LatestFrameSource
from target_vision.config import DEFAULT_CONFIG_FILE, ConfigError, load_config
from target_vision.live_tuning import RuntimeParamWatcher
from target_vision.pipeline import VisionPipeline
from target_vision.processor import VisionProcessor
from target_vision.telemetry import (
    CompositePublisher,
    MjpegStreamPublisher,
    NetworkTablesPublisher,
    PreviewWindow,
    SerialTelemetryPublisher,
    TelemetryError,
    TelemetryPublisher,
)

logger = logging.getLogger("target_vision")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="target-vision",
        description="Track a single colored target and publish its offset.",
    )
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE, help="JSON config file")
    parser.add_argument("--tuning", metavar="FILE", help="JSON file of vision params to hot-reload")
    parser.add_argument("--preview", action="store_true", help="show the processed frame in a window")
    parser.add_argument("--serial", metavar="PORT", help="also send telemetry lines to this serial port")
    parser.add_argument("--baud", type=int, default=115_200, help="serial baud rate (default: %(default)s)")
    parser.add_argument("--stream-port", type=int, metavar="N", help="serve the processed frame as MJPEG on this port")
    parser.add_argument("--no-nt", action="store_true", help="do not start NetworkTables")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
    )


def build_publishers(args: argparse.Namespace, cfg, on_quit) -> List[TelemetryPublisher]:
    pubs: List[TelemetryPublisher] = []
    if not args.no_nt:
        pubs.append(NetworkTablesPublisher(cfg.telemetry).start())
    if args.serial:
        pubs.append(SerialTelemetryPublisher(args.serial, baudrate=args.baud).open())
    if cfg.stream.port is not None:
        pubs.append(MjpegStreamPublisher(cfg.stream, cfg.telemetry.stream_name).start())
    if args.preview:
        pubs.append(PreviewWindow(cfg.telemetry.stream_name, on_quit=on_quit))
    return pubs


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1
    if args.stream_port is not None:
        cfg.stream = replace(cfg.stream, port=args.stream_port)

    if not cfg.cameras:
        logger.error("No cameras configured")
        return 1
    cam_cfg = cfg.cameras[0]
    camera = Camera(cam_cfg)
    if not camera.open():
        return 1

    pipeline = VisionPipeline(cfg.pipeline)
    watcher = RuntimeParamWatcher(args.tuning) if args.tuning else None
    source = LatestFrameSource(camera, max_reopens=cam_cfg.max_reopens)

    publisher = CompositePublisher([])
    processor = VisionProcessor(source, pipeline, publisher, watcher)
    try:
        publisher.publishers.extend(build_publishers(args, cfg, processor.stop))
    except TelemetryError as exc:
        logger.error("%s", exc)
        publisher.close()
        camera.release()
        return 1

    logger.info(
        "Tracking HSV %s..%s on camera '%s'",
        pipeline.config.color_range.low,
        pipeline.config.color_range.high,
        cam_cfg.name,
    )
    try:
        with source:
            processor.start()
            while not processor.join(timeout=1.0):
                pass
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        processor.stop()
        processor.join(timeout=2.0)
    finally:
        publisher.close()

    s = processor.stats()
    logger.info(
        "Exited. Total frames: %d (%d with target)",
        s["total_frames"],
        s["frames_with_target"],
    )
    return 1 if processor.error is not None else 0


if __name__ == "__main__":
    sys.exit(main())
