"""
framelock Video Pipeline - Frame Source & Tracking-Resolution Downsampler

Two halves:
- Raw frame source: threaded OpenCV capture that always hands out the
  freshest BGR frame (webcam, file or RTSP)
- FrameDownsampler: turns any color frame into a small fixed-width
  grayscale float buffer for correlation

Tracking never works on full-resolution frames. Every frame goes through
FrameDownsampler first:

    frame (1920x1080 BGR) ──► gray ──► 256x144 float32 in [0, 1]
"""

import threading
import time
from typing import Optional, Tuple
from dataclasses import dataclass
from enum import Enum
import logging

import cv2
import numpy as np


class VideoSource(Enum):
    """Video source types."""
    WEBCAM = "webcam"
    FILE = "file"
    RTSP = "rtsp"


@dataclass
class FrameMetadata:
    """State of a frame source at the newest captured frame."""
    frame_number: int
    width: int
    height: int
    native_fps: float
    dropped_frames: int
    captured_at: float = 0.0


@dataclass(frozen=True)
class GrayFrame:
    """
    Immutable grayscale frame at tracking resolution.

    pixels: row-major float32 array of shape (height, width), values in [0, 1].
    """
    pixels: np.ndarray

    def __post_init__(self):
        pixels = np.array(self.pixels, dtype=np.float32, order="C")
        if pixels.ndim != 2:
            raise ValueError(f"GrayFrame needs a 2-D array, got shape {pixels.shape}")
        if pixels.shape[0] < 2 or pixels.shape[1] < 2:
            raise ValueError(f"GrayFrame must be at least 2x2, got {pixels.shape[1]}x{pixels.shape[0]}")
        pixels.flags.writeable = False
        object.__setattr__(self, "pixels", pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)


class FrameDownsampler:
    """
    Desaturate + resample a raw frame to the tracking resolution.

    Output width is fixed (default 256, never below 32); height keeps the
    source aspect ratio and is at least 2. Resampling is a single scale
    transform with area interpolation when shrinking (linear when growing),
    so correlation never sees nearest-neighbour aliasing.

    Accepts BGR (HxWx3), BGRA (HxWx4) or single-channel (HxW / HxWx1)
    arrays. uint8 and uint16 are rescaled to [0, 1]; float input is assumed
    to already be in [0, 1] and is clipped. Other pixel types (int32, bool,
    ...) have no known value range and are rejected.

    Returns None ("no frame") for anything unreadable. Callers skip the frame.
    """

    DEFAULT_WIDTH = 256
    MIN_WIDTH = 32

    def __init__(self, target_width: int = DEFAULT_WIDTH):
        self.target_width = max(self.MIN_WIDTH, int(target_width))
        self.logger = logging.getLogger("FrameDownsampler")

    def output_size(self, width: int, height: int) -> Tuple[int, int]:
        """Target (width, height) for a source of the given size."""
        scale = self.target_width / float(width)
        target_height = max(2, int(np.floor(height * scale + 0.5)))
        return self.target_width, target_height

    def downsample(self, frame: Optional[np.ndarray]) -> Optional[GrayFrame]:
        if frame is None:
            self.logger.debug("No frame supplied")
            return None

        frame = np.asarray(frame)
        if frame.ndim == 3 and frame.shape[2] == 1:
            frame = frame[:, :, 0]
        if frame.ndim not in (2, 3) or frame.size == 0:
            self.logger.debug(f"Unreadable frame shape {frame.shape}")
            return None

        h, w = frame.shape[:2]
        if w <= 0 or h <= 0:
            return None

        if frame.dtype == np.uint8:
            value_scale = 1.0 / 255.0
        elif frame.dtype == np.uint16:
            value_scale = 1.0 / 65535.0
        elif np.issubdtype(frame.dtype, np.floating):
            frame = frame.astype(np.float32)
            value_scale = 1.0
        else:
            self.logger.debug(f"Unsupported pixel type {frame.dtype}")
            return None

        try:
            gray = self._desaturate(frame)
            if gray is None:
                self.logger.debug(f"Unsupported channel count {frame.shape[2]}")
                return None
            target_w, target_h = self.output_size(w, h)
            interpolation = cv2.INTER_AREA if target_w < w else cv2.INTER_LINEAR
            small = cv2.resize(gray, (target_w, target_h), interpolation=interpolation)
        except cv2.error as e:
            self.logger.debug(f"Frame conversion failed: {e}")
            return None

        pixels = np.clip(small.astype(np.float32) * value_scale, 0.0, 1.0)
        return GrayFrame(pixels)

    @staticmethod
    def _desaturate(frame: np.ndarray) -> Optional[np.ndarray]:
        if frame.ndim == 2:
            return frame
        channels = frame.shape[2]
        if channels == 3:
            return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        if channels == 4:
            return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
        return None



class ThreadedVideoCapture:
    """
    Raw frame source backed by a daemon reader thread.

    Only the newest frame is kept; frames replaced before anyone read them
    are counted as dropped. Every published frame gets a sequence number so
    consumers can tell a new frame from one they already processed.

    Usage:
        with ThreadedVideoCapture(source=0) as cap:
            number, frame = cap.read_latest()
    """

    def __init__(
        self,
        source: int | str = 0,
        resolution: Optional[Tuple[int, int]] = None
    ):
        """
        Args:
            source: Camera index (int), video file path or RTSP URL (str)
            resolution: Requested (width, height) for cameras, None = native
        """
        self.source = source
        self.resolution = resolution

        self._cap: Optional[cv2.VideoCapture] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._frame_number = 0
        self._read_number = 0
        self._dropped = 0
        self._captured_at = 0.0

        self._width = 0
        self._height = 0
        self._native_fps = 0.0
        self._frame_interval = 0.0

        self.logger = logging.getLogger(__name__)

    @property
    def source_type(self) -> VideoSource:
        if isinstance(self.source, int):
            return VideoSource.WEBCAM
        if str(self.source).lower().startswith(("rtsp://", "rtsps://")):
            return VideoSource.RTSP
        return VideoSource.FILE

    def _backend(self) -> int:
        if self.source_type != VideoSource.WEBCAM:
            return cv2.CAP_ANY
        import platform
        return {
            "Windows": cv2.CAP_DSHOW,
            "Darwin": cv2.CAP_AVFOUNDATION,
        }.get(platform.system(), cv2.CAP_V4L2)

    def _open_capture(self) -> bool:
        cap = cv2.VideoCapture(self.source, self._backend())
        if not cap.isOpened() and self.source_type == VideoSource.WEBCAM:
            self.logger.warning(f"Platform backend failed for camera {self.source}, using default")
            cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            self.logger.error(f"Failed to open video source: {self.source}")
            return False

        if self.resolution and self.source_type == VideoSource.WEBCAM:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._cap = cap
        self._width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._native_fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        self.logger.info(f"Opened {self.source}: {self._width}x{self._height} @ {self._native_fps:.1f}fps")
        return True

    def _next_frame(self) -> Optional[np.ndarray]:
        ok, frame = self._cap.read()
        return frame if ok else None

    def _publish(self, frame: np.ndarray):
        with self._lock:
            if self._frame_number > self._read_number:
                self._dropped += 1
            self._frame = frame
            self._frame_number += 1
            self._captured_at = time.perf_counter()

    def _run(self):
        while self._running:
            frame = self._next_frame()
            if frame is not None:
                self._publish(frame)
                if self._frame_interval:
                    time.sleep(self._frame_interval)
            elif self.source_type == VideoSource.FILE:
                self.logger.info(f"End of {self.source} after {self._frame_number} frames")
                self._running = False
            else:
                # Cameras and streams hiccup; retry without spinning
                time.sleep(0.005)

    def start(self) -> bool:
        """Open the source and start the reader thread."""
        if self._running:
            return True
        if self._cap is None and not self._open_capture():
            return False

        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        return True

    def stop(self):
        """Stop the reader thread and release the source."""
        self._running = False
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self.logger.info(f"Closed {self.source}")

    def read_latest(self) -> Tuple[int, Optional[np.ndarray]]:
        """(sequence number, copy of the newest frame); (0, None) before the first frame."""
        with self._lock:
            if self._frame is None:
                return 0, None
            self._read_number = self._frame_number
            return self._frame_number, self._frame.copy()

    @property
    def latest_frame(self) -> Optional[np.ndarray]:
        return self.read_latest()[1]

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """cv2.VideoCapture-style read."""
        frame = self.latest_frame
        return frame is not None, frame

    @property
    def is_opened(self) -> bool:
        return self._cap is not None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def frame_size(self) -> Tuple[int, int]:
        return (self._width, self._height)

    @property
    def metadata(self) -> FrameMetadata:
        with self._lock:
            return FrameMetadata(
                frame_number=self._frame_number,
                width=self._width,
                height=self._height,
                native_fps=self._native_fps,
                dropped_frames=self._dropped,
                captured_at=self._captured_at,
            )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class VideoFileReader(ThreadedVideoCapture):
    """Video file played back at its native frame rate, optionally looping."""

    def __init__(self, filepath: str, loop: bool = False, **kwargs):
        super().__init__(source=filepath, **kwargs)
        self.loop = loop

    def _open_capture(self) -> bool:
        if not super()._open_capture():
            return False
        self._frame_interval = 1.0 / self._native_fps
        return True

    def _next_frame(self) -> Optional[np.ndarray]:
        frame = super()._next_frame()
        if frame is None and self.loop:
            self.logger.debug(f"Rewinding {self.source}")
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            frame = super()._next_frame()
        return frame
