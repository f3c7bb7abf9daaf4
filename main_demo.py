#!/usr/bin/env python3
"""
framelock - Headless Guidance Demo

Runs the full pipeline on a camera or video file and prints one line of
guidance per frame:
1. Opens the source
2. Locks the tracker on the anchor point of the first readable frame
3. Tracks the subject, holding it through short dropouts
4. Re-locks when the resilience controller asks for it
5. Prints status, match score, raw/stable guidance and the pixel offset

Usage:
    python main_demo.py --source video.mp4 --anchor 0.5,0.5

No window is opened and nothing is drawn; pipe the output wherever needed.
"""

import sys
import time
import logging
import argparse
from typing import Optional, Tuple

# Add src to path
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from framelock.config import (
    TrackerSettings,
    StabilizerSettings,
    load_environment,
    log_level_from_env,
)
from framelock.guidance import GuidanceComposer, scaled_max_radius, snapped_guidance_offset
from framelock.resilience import TrackingResilienceController, observation_from_track
from framelock.video_pipeline import ThreadedVideoCapture, VideoFileReader


class GuidanceDemo:
    """Frame loop wiring tracker, resilience controller and composer."""

    FIRST_FRAME_TIMEOUT = 5.0

    def __init__(
            self,
            source: int | str = 0,
            anchor: Tuple[float, float] = (0.5, 0.5),
            template: str = "rule_of_thirds",
            max_frames: Optional[int] = None,
            loop: bool = False
    ):
        self.source = source
        self.anchor = anchor
        self.template = template
        self.max_frames = max_frames
        self.loop = loop

        self.tracker = TrackerSettings.from_env().create_tracker()
        self.composer = GuidanceComposer(StabilizerSettings.from_env().create_stabilizer())
        self.resilience = TrackingResilienceController()

        self.logger = logging.getLogger("GuidanceDemo")

    def _make_source(self) -> ThreadedVideoCapture:
        if isinstance(self.source, str):
            return VideoFileReader(self.source, loop=self.loop)
        return ThreadedVideoCapture(source=self.source)

    def _wait_first_frame(self, video: ThreadedVideoCapture):
        deadline = time.monotonic() + self.FIRST_FRAME_TIMEOUT
        while time.monotonic() < deadline:
            number, frame = video.read_latest()
            if frame is not None:
                return number, frame
            time.sleep(0.01)
        return 0, None

    def _lock(self, frame, anchor: Tuple[float, float], now: float) -> bool:
        if not self.tracker.lock(frame, anchor):
            return False
        self.resilience.seed(anchor, 1.0, now)
        self.composer.reset()
        return True

    def run(self) -> int:
        with self._make_source() as video:
            if not video.is_opened:
                return 1
            try:
                return self._loop(video)
            except KeyboardInterrupt:
                self.logger.info("Interrupted by user")
                return 0

    def _loop(self, video: ThreadedVideoCapture) -> int:
        last_number, frame = self._wait_first_frame(video)
        if frame is None:
            self.logger.error("No frame received from source")
            return 1

        if not self._lock(frame, self.anchor, time.monotonic()):
            self.logger.error("Could not lock on the first frame")
            return 1

        frame_index = 0
        while True:
            number, frame = video.read_latest()
            if number == last_number:
                if not video.is_running:
                    break
                time.sleep(0.002)
                continue
            last_number = number

            now = time.monotonic()
            result = self.tracker.update(frame)
            filtered = self.resilience.update(
                observation_from_track(result), now, fallback_anchor=self.anchor
            )
            if filtered.reacquire_anchor is not None:
                self._lock(frame, filtered.reacquire_anchor, now)

            obs = filtered.observation
            guidance = self.composer.evaluate(
                self.template,
                None if obs.is_lost else obs.center,
                obs.confidence,
                now,
            )
            h, w = frame.shape[:2]
            offset = snapped_guidance_offset(guidance.stable, scaled_max_radius(w, h))

            print(
                f"{frame_index:06d} {result.status.value:8s} score={result.score:+.3f} "
                f"raw=({guidance.raw_dx:+.3f},{guidance.raw_dy:+.3f}) "
                f"stable=({guidance.stable_dx:+.3f},{guidance.stable_dy:+.3f}) "
                f"hold={int(guidance.is_holding)} reframe={int(guidance.requires_reframe)} "
                f"offset_px=({offset[0]:+.1f},{offset[1]:+.1f})"
            )

            frame_index += 1
            if self.max_frames is not None and frame_index >= self.max_frames:
                break

        self.logger.info(f"Processed {frame_index} frames, {video.metadata.dropped_frames} dropped")
        return 0


def parse_anchor(value: str) -> Tuple[float, float]:
    try:
        x, y = value.split(",")
        return float(x), float(y)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid anchor {value!r}, expected X,Y in [0, 1]")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="framelock headless guidance demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  FRAMELOCK_* variables (or a .env file) override tracker and stabilizer
  tuning, e.g. FRAMELOCK_SEARCH_RADIUS=24 FRAMELOCK_V_MAX_PER_SEC=2.5

Examples:
  python main_demo.py                                 # Default webcam (0)
  python main_demo.py --source video.mp4              # Video file
  python main_demo.py --source 1 --anchor 0.3,0.6     # Webcam 1, custom anchor
  python main_demo.py --template center --max-frames 300
        """
    )

    parser.add_argument(
        "--source", "-s",
        default=0,
        help="Video source: camera index (0, 1, ...) or file path"
    )
    parser.add_argument(
        "--anchor", "-a",
        type=parse_anchor,
        default=(0.5, 0.5),
        help="Normalized lock point as X,Y (default 0.5,0.5)"
    )
    parser.add_argument(
        "--template", "-t",
        choices=["center", "rule_of_thirds", "golden_points"],
        default="rule_of_thirds",
        help="Composition template"
    )
    parser.add_argument(
        "--max-frames",
        type=int,
        default=None,
        help="Stop after this many frames"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Loop video files when they reach the end"
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Load FRAMELOCK_* overrides from this .env file"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: FRAMELOCK_LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()
    load_environment(args.env_file)

    logging.basicConfig(
        level=getattr(logging, args.log_level or log_level_from_env()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Parse source (supports: camera, 0, 1, path/to/video.mp4)
    source_arg = args.source
    if isinstance(source_arg, str) and source_arg.lower() == "camera":
        source = 0
    else:
        try:
            source = int(source_arg)
        except ValueError:
            source = source_arg

    demo = GuidanceDemo(
        source=source,
        anchor=args.anchor,
        template=args.template,
        max_frames=args.max_frames,
        loop=args.loop
    )
    sys.exit(demo.run())


if __name__ == "__main__":
    main()
