"""Watches scan-matching statistics and resets the pose when matching degrades."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum

APP_NAME = "ROSNDTMatchingMonitor"

NDT_THRESHOLD_ITERATION_WARN = 10
NDT_THRESHOLD_ITERATION_STOP = 32
NDT_THRESHOLD_SCORE_MAX_DELTA = 14.0
NDT_MIN_STABLE_SAMPLES = 30
NDT_TIME_TO_FATAL_PREDICTIONS = 2.0

GNSS_AVAILABLE_TEXT = " - GNSS available"
GNSS_MISSING_TEXT = " - NO GNSS available"


class NdtStatus(Enum):
    """Health of the scan matcher as seen by the monitor."""

    NDT_NOT_INITIALIZED = 0
    NDT_OK = 1
    NDT_WARNING = 2
    NDT_ERROR = 3
    NDT_FATAL = 4


Color = tuple[float, float, float, float]


@dataclass(frozen=True)
class OverlayText:
    """Text overlay shown to the operator."""

    text: str
    fg_color: Color
    bg_color: Color = (0.0, 0.0, 0.0, 0.2)
    width: int = 800
    height: int = 100
    left: int = 10
    top: int = 10
    text_size: int = 16
    line_width: int = 2


NORMAL_TEXT = OverlayText("NDT MONITOR - OK", (0.0, 1.0, 0.0, 1.0))
WARN_TEXT = replace(NORMAL_TEXT, text="NDT MONITOR - WARNING", fg_color=(1.0, 0.6, 0.0, 1.0))
NOT_READY_TEXT = replace(WARN_TEXT, text="NDT MONITOR - NOT INITIALIZED")
ERROR_TEXT = replace(
    NORMAL_TEXT,
    text="NDT MONITOR - ERROR \n TRYING LAST CORRECT LOCALIZATION",
    fg_color=(1.0, 0.0, 0.0, 1.0),
)
FATAL_TEXT = replace(ERROR_TEXT, text="NDT MONITOR - FATAL CANNOT RECOVER AUTOMATICALLY")

_STATUS_TEXT = {
    NdtStatus.NDT_ERROR: ERROR_TEXT,
    NdtStatus.NDT_WARNING: WARN_TEXT,
    NdtStatus.NDT_OK: NORMAL_TEXT,
}


@dataclass(frozen=True)
class StampedPose:
    """A pose with a time stamp in seconds and a frame name.

    Defaults are those of an empty pose message: everything zero.
    """

    stamp: float = 0.0
    frame_id: str = ""
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    orientation: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class MonitorOutput:
    """What the monitor emits for one matched pose."""

    status: NdtStatus
    text: OverlayText
    initial_pose: StampedPose | None = None

    @property
    def status_name(self) -> str:
        return self.status.name


def predict_next_pose(prev_pose: StampedPose, current_pose: StampedPose) -> StampedPose:
    """Estimate the next pose from the previous and current ones.

    The time stamp advances by the elapsed time, truncated to whole seconds
    together with the current seconds; position and orientation are kept.
    """
    time_delta = current_pose.stamp - prev_pose.stamp
    if time_delta == 0:
        return current_pose
    whole = math.floor(current_pose.stamp)
    fraction = current_pose.stamp - whole
    stamp = math.trunc(whole + time_delta) + fraction
    cx, cy, cz = current_pose.position
    position = (
        cx + (cx - cx) / time_delta,
        cy + (cy - cy) / time_delta,
        cz + (cz - cz) / time_delta,
    )
    return replace(current_pose, stamp=stamp, position=position)


class NdtMatchingMonitor:
    """State machine judging matcher health from iteration counts and score jumps."""

    def __init__(
        self,
        iteration_threshold_warning: int = NDT_THRESHOLD_ITERATION_WARN,
        iteration_threshold_stop: int = NDT_THRESHOLD_ITERATION_STOP,
        score_delta_threshold: float = NDT_THRESHOLD_SCORE_MAX_DELTA,
        min_stable_samples: int = NDT_MIN_STABLE_SAMPLES,
        fatal_time_threshold: float = NDT_TIME_TO_FATAL_PREDICTIONS,
    ) -> None:
        if iteration_threshold_warning > iteration_threshold_stop:
            iteration_threshold_warning, iteration_threshold_stop = (
                iteration_threshold_stop,
                iteration_threshold_warning,
            )
        self.iteration_threshold_warning = iteration_threshold_warning
        self.iteration_threshold_stop = iteration_threshold_stop
        self.score_delta_threshold = score_delta_threshold
        self.min_stable_samples = min_stable_samples
        self.fatal_time_threshold = fatal_time_threshold

        self.status = NdtStatus.NDT_NOT_INITIALIZED
        self.initialized = False
        self.gnss_pose_available = False
        self.gnss_text = GNSS_MISSING_TEXT
        self.stable_samples = 0
        self.prediction_samples = 0
        self.last_prediction_time = 0.0

        self.iteration_count = 0
        self.last_score = 0.0
        self.current_score = 0.0
        self.score_delta = 0.0

        self.initial_pose = StampedPose()
        self.prev_initial_pose = StampedPose()
        self.gnss_pose = StampedPose()
        self.prev_gnss_pose = StampedPose()

    def on_gnss(self, pose: StampedPose) -> None:
        """Record a GNSS pose; from now on resets use GNSS."""
        self.gnss_pose = pose
        self.gnss_pose_available = True
        self.gnss_text = GNSS_AVAILABLE_TEXT

    def on_ndt_stat(self, iteration: int, score: float) -> None:
        """Record the matcher's iteration count and fitness score."""
        self.iteration_count = iteration
        if self.last_score == 0.0:
            self.last_score = score
        self.current_score = score
        self.score_delta = abs(self.current_score - self.last_score)

    def on_initial_pose(self, pose: StampedPose) -> bool:
        """Leave the fatal state when a wholly different initial pose arrives.

        Returns True if the monitor was reset.
        """
        if self.status is not NdtStatus.NDT_FATAL:
            return False
        old = self.initial_pose
        differs = all(a != b for a, b in zip(pose.position, old.position)) and all(
            a != b for a, b in zip(pose.orientation, old.orientation)
        )
        if not differs:
            return False
        self.status = NdtStatus.NDT_NOT_INITIALIZED
        self.initial_pose = pose
        self.initialized = False
        self.last_score = 0.0
        return True

    def on_ndt_pose(self, pose: StampedPose) -> MonitorOutput:
        """Judge one matched pose and return the status, overlay and any reset pose."""
        if self.status is NdtStatus.NDT_FATAL:
            reset = StampedPose(
                pose.stamp, pose.frame_id, self.initial_pose.position, self.initial_pose.orientation
            )
            self.stable_samples = 0
            return MonitorOutput(self.status, FATAL_TEXT, reset)

        published: StampedPose | None = None
        warn = self.iteration_threshold_warning
        stop = self.iteration_threshold_stop
        iteration = self.iteration_count
        delta_ok = self.score_delta < self.score_delta_threshold

        if iteration < warn and delta_ok:
            self.initial_pose = replace(
                self.initial_pose, position=pose.position, orientation=pose.orientation
            )
            self.prev_initial_pose = self.initial_pose
            if self.stable_samples >= self.min_stable_samples:
                self.status = NdtStatus.NDT_OK
                self.initialized = True
            self.stable_samples += 1
        elif self.initialized and (iteration >= stop or (iteration >= warn and not delta_ok)):
            self.status = NdtStatus.NDT_ERROR
            if self.gnss_pose_available:
                frame_id = self.gnss_pose.frame_id
                predicted = predict_next_pose(self.prev_gnss_pose, self.gnss_pose)
            else:
                frame_id = pose.frame_id
                predicted = predict_next_pose(self.prev_initial_pose, self.initial_pose)
                if (
                    self.prediction_samples > self.fatal_time_threshold
                    and pose.stamp - self.last_prediction_time <= self.fatal_time_threshold
                ):
                    self.status = NdtStatus.NDT_FATAL
                self.last_prediction_time = pose.stamp
                self.prediction_samples += 1
            if self.gnss_pose_available or self.stable_samples >= self.min_stable_samples:
                published = StampedPose(pose.stamp, frame_id, predicted.position, predicted.orientation)
                self.stable_samples = 0
        elif self.initialized and (warn < iteration < stop or self.status is NdtStatus.NDT_ERROR):
            self.status = NdtStatus.NDT_WARNING
            self.prev_initial_pose = self.initial_pose

        self.prev_gnss_pose = self.gnss_pose

        if self.initialized:
            base = _STATUS_TEXT.get(self.status, NOT_READY_TEXT)
        else:
            base = NOT_READY_TEXT
        text = replace(base, text=base.text + self.gnss_text)

        self.last_score = self.current_score
        return MonitorOutput(self.status, text, published)