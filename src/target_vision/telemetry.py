# telemetry.py
"""Where each cycle's numbers and processed frame end up."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import cv2
import numpy as np
import serial
from networktables import NetworkTables

from target_vision.common import TargetResult
from target_vision.config import StreamConfig, TelemetryConfig

logger = logging.getLogger(__name__)


class TelemetryError(RuntimeError):
    """Raised when a publisher cannot deliver a cycle's values."""


class TelemetryPublisher:
    """Base class: receives ``val``/``tx``/``ty``/``ta`` and the processed frame once per cycle."""

    def publish(self, result: TargetResult, annotated: np.ndarray) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# ----------------------------------------------------------------------
#   In-process store
# ----------------------------------------------------------------------
class MemoryTelemetry(TelemetryPublisher):
    """Keeps the latest entries and frame in memory; safe to read from other threads."""

    def __init__(self, stream_name: str = "Processed") -> None:
        self.stream_name = stream_name
        self._lock = threading.Lock()
        self._entries: Dict[str, float] = {}
        self._frames: Dict[str, np.ndarray] = {}
        self.updates = 0

    def publish(self, result: TargetResult, annotated: np.ndarray) -> None:
        with self._lock:
            self._entries.update(result.as_entries())
            self._frames[self.stream_name] = annotated
            self.updates += 1

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._entries.get(key, default)

    def entries(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._entries)

    def latest_frame(self, name: Optional[str] = None) -> Optional[np.ndarray]:
        with self._lock:
            return self._frames.get(name or self.stream_name)


# ----------------------------------------------------------------------
#   NetworkTables
# ----------------------------------------------------------------------
class NetworkTablesPublisher(TelemetryPublisher):
    """Writes the four numbers into a NetworkTables table (``datatable`` by default)."""

    def __init__(self, config: TelemetryConfig, instance=None) -> None:
        self.config = config
        self._nt = instance if instance is not None else NetworkTables
        self._table = None

    def start(self) -> "NetworkTablesPublisher":
        if self.config.server:
            logger.info("Setting up NetworkTables server")
            self._nt.startServer()
        else:
            logger.info("Setting up NetworkTables client for team %d", self.config.team)
            self._nt.startClientTeam(self.config.team)
            self._nt.startDSClient()
        self._table = self._nt.getTable(self.config.table)
        return self

    def publish(self, result: TargetResult, annotated: np.ndarray) -> None:
        if self._table is None:
            raise TelemetryError("NetworkTables publisher used before start()")
        for key, value in result.as_entries().items():
            self._table.putNumber(key, value)

    def close(self) -> None:
        if self._table is not None:
            self._nt.shutdown()
            self._table = None


# ----------------------------------------------------------------------
#   Serial link (micro-controller on the robot)
# ----------------------------------------------------------------------
@dataclass
class _SerialCfg:
    port: str
    baudrate: int = 115_200
    timeout: float = 1.0


class SerialTelemetryPublisher(TelemetryPublisher):
    """One ASCII line per cycle: ``VAL <n> TX <x> TY <y> TA <a>``."""

    def __init__(
        self,
        port: str,
        baudrate: int = 115_200,
        timeout: float = 1.0,
        *,
        eol: str = "\n",
        auto_flush: bool = True,
    ) -> None:
        self._cfg = _SerialCfg(str(port), baudrate, timeout)
        self._eol = eol.encode()
        self._auto_flush = auto_flush
        self._ser: Optional[serial.Serial] = None
        self._lock = threading.Lock()

    # ---------------- Serial plumbing ----------------
    def open(self) -> "SerialTelemetryPublisher":
        if self._ser and self._ser.is_open:
            return self
        try:
            self._ser = serial.Serial(
                port=self._cfg.port,
                baudrate=self._cfg.baudrate,
                timeout=self._cfg.timeout,
                write_timeout=self._cfg.timeout,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
            )
        except serial.SerialException as exc:
            raise TelemetryError(f"Could not open {self._cfg.port}: {exc}") from exc
        logger.info("Serial telemetry on %s @ %d baud", self._cfg.port, self._cfg.baudrate)
        return self

    def is_open(self) -> bool:
        return bool(self._ser and self._ser.is_open)

    @staticmethod
    def format_line(result: TargetResult) -> str:
        return f"VAL {result.count} TX {result.tx} TY {result.ty} TA {result.ta}"

    def publish(self, result: TargetResult, annotated: np.ndarray) -> None:
        if not self.is_open():
            raise TelemetryError("Serial port is not open")
        line = self.format_line(result).encode() + self._eol
        with self._lock:
            try:
                self._ser.write(line)
                if self._auto_flush:
                    self._ser.flush()
            except serial.SerialException as exc:
                raise TelemetryError(f"Serial write failed: {exc}") from exc

    def close(self) -> None:
        if self._ser and self._ser.is_open:
            self._ser.close()
        self._ser = None

    def __enter__(self) -> "SerialTelemetryPublisher":
        return self.open()

    def __repr__(self) -> str:
        state = "open" if self.is_open() else "closed"
        return f"<SerialTelemetryPublisher port={self._cfg.port!r} ({state})>"


# ----------------------------------------------------------------------
#   MJPEG over HTTP
# ----------------------------------------------------------------------
_INDEX_HTML = """<!DOCTYPE html>
<html>
<head><title>{name}</title></head>
<body style="margin:0;background:#111">
<img src="/{name}" alt="{name}" style="max-width:100%">
</body>
</html>
"""


class _StreamingHandler(BaseHTTPRequestHandler):
    server: "_ThreadingHTTPServer"

    def do_GET(self) -> None:
        publisher = self.server.publisher
        name = publisher.stream_name
        if self.path == "/":
            body = _INDEX_HTML.format(name=name).encode()
            self.send_response(200)
            self.send_header("Content-Type", "text/html")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        elif self.path == f"/{name}.jpg":
            self._send_snapshot(publisher)
        elif self.path in (f"/{name}", f"/{name}.mjpg"):
            self._send_stream(publisher)
        else:
            self.send_error(404)

    def _send_snapshot(self, publisher: "MjpegStreamPublisher") -> None:
        _, jpeg = publisher.latest_jpeg()
        if jpeg is None:
            self.send_error(503, "No frame yet")
            return
        self.send_response(200)
        self.send_header("Content-Type", "image/jpeg")
        self.send_header("Content-Length", str(len(jpeg)))
        self.end_headers()
        self.wfile.write(jpeg)

    def _send_stream(self, publisher: "MjpegStreamPublisher") -> None:
        self.send_response(200)
        self.send_header("Content-Type", "multipart/x-mixed-replace; boundary=jpgboundary")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Pragma", "no-cache")
        self.send_header("Connection", "close")
        self.end_headers()

        min_interval = 1.0 / publisher.config.max_fps if publisher.config.max_fps > 0 else 0.0
        seen = -1
        try:
            while not publisher.stopping:
                seq, jpeg = publisher.wait_jpeg(seen, timeout=0.5)
                if jpeg is None or seq == seen:
                    continue
                seen = seq
                self.wfile.write(b"--jpgboundary\r\n")
                self.send_header("Content-Type", "image/jpeg")
                self.send_header("Content-Length", str(len(jpeg)))
                self.end_headers()
                self.wfile.write(jpeg)
                self.wfile.write(b"\r\n")
                if min_interval:
                    time.sleep(min_interval)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Stream client %s disconnected", self.client_address[0])

    def log_message(self, format, *args) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class _ThreadingHTTPServer(ThreadingMixIn, HTTPServer):
    allow_reuse_address = True
    daemon_threads = True
    publisher: "MjpegStreamPublisher"


class MjpegStreamPublisher(TelemetryPublisher):
    """
    Serves the processed frame as an MJPEG stream.

    ``/`` is a viewer page, ``/<name>`` the stream, ``/<name>.jpg`` a single
    snapshot. JPEG encoding happens lazily on the HTTP threads so the vision
    thread only hands over a reference.
    """

    def __init__(self, config: StreamConfig, stream_name: str = "Processed", host: str = "0.0.0.0") -> None:
        self.config = config
        self.stream_name = stream_name
        self.host = host
        self._cond = threading.Condition()
        self._frame: Optional[np.ndarray] = None
        self._seq = 0
        self._jpeg: Tuple[int, Optional[bytes]] = (-1, None)
        self._server: Optional[_ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self.stopping = False

    def start(self) -> "MjpegStreamPublisher":
        port = self.config.port if self.config.port is not None else 0
        self._server = _ThreadingHTTPServer((self.host, port), _StreamingHandler)
        self._server.publisher = self
        self._thread = threading.Thread(target=self._server.serve_forever, name="mjpeg", daemon=True)
        self._thread.start()
        logger.info("Streaming '%s' at http://%s:%d/%s", self.stream_name, self.host, self.address[1], self.stream_name)
        return self

    @property
    def address(self) -> Tuple[str, int]:
        if self._server is None:
            raise TelemetryError("stream server not started")
        return self._server.server_address[:2]

    def publish(self, result: TargetResult, annotated: np.ndarray) -> None:
        with self._cond:
            self._frame = annotated
            self._seq += 1
            self._cond.notify_all()

    def _encode_locked(self) -> Tuple[int, Optional[bytes]]:
        cached_seq, _ = self._jpeg
        if self._frame is not None and cached_seq != self._seq:
            ok, buf = cv2.imencode(".jpg", self._frame, [cv2.IMWRITE_JPEG_QUALITY, self.config.jpeg_quality])
            if not ok:
                raise TelemetryError("JPEG encoding failed")
            self._jpeg = (self._seq, buf.tobytes())
        return self._jpeg

    def latest_jpeg(self) -> Tuple[int, Optional[bytes]]:
        with self._cond:
            return self._encode_locked()

    def wait_jpeg(self, seen: int, timeout: float) -> Tuple[int, Optional[bytes]]:
        with self._cond:
            if self._seq == seen or self._frame is None:
                self._cond.wait(timeout)
            return self._encode_locked()

    def close(self) -> None:
        self.stopping = True
        with self._cond:
            self._cond.notify_all()
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None


# ----------------------------------------------------------------------
#   Local preview / fan-out
# ----------------------------------------------------------------------
class PreviewWindow(TelemetryPublisher):
    """Shows the processed frame in an OpenCV window. ``q`` calls ``on_quit``."""

    def __init__(self, name: str = "Processed", on_quit: Optional[Callable[[], None]] = None) -> None:
        self.name = name
        self.on_quit = on_quit
        self._created = False

    def publish(self, result: TargetResult, annotated: np.ndarray) -> None:
        if not self._created:
            cv2.namedWindow(self.name, cv2.WINDOW_NORMAL)
            self._created = True
        cv2.imshow(self.name, annotated)
        if (cv2.waitKey(1) & 0xFF) == ord("q") and self.on_quit is not None:
            self.on_quit()

    def close(self) -> None:
        if self._created:
            cv2.destroyWindow(self.name)
            self._created = False


class CompositePublisher(TelemetryPublisher):
    def __init__(self, publishers: Iterable[TelemetryPublisher]) -> None:
        self.publishers: List[TelemetryPublisher] = list(publishers)

    def publish(self, result: TargetResult, annotated: np.ndarray) -> None:
        for pub in self.publishers:
            pub.publish(result, annotated)

    def close(self) -> None:
        # Close everything even if one of them fails.
        for pub in self.publishers:
            try:
                pub.close()
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to close %r: %s", pub, exc)
