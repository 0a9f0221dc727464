from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Sequence

from .scoring import compare_keypoints_angle_based
from .types import KeypointSet, ReferencePose


@dataclass(frozen=True)
class TrackerConfig:
    match_threshold: float = 20.0  # 平均角度差小于该值视为匹配
    required_frames: int = 50
    max_fail_frames: int = 10


@dataclass
class TrackerState:
    current_index: int = 0
    success_streak: int = 0
    fail_streak: int = 0


class TrackerEvent(Enum):
    NONE = "none"
    RESET = "reset"
    ADVANCED = "advanced"
    FINISHED = "finished"


Comparator = Callable[[KeypointSet, KeypointSet], float]


class MatchTracker:
    """逐帧匹配状态机：累计成功/失败帧数，决定前进、重置或结束。

    - 平均角度差 < match_threshold 记一次成功帧，否则记一次失败帧；
    - 成功帧达到 required_frames：前进到下一个姿势，两个计数同时清零；
    - 失败帧超过 max_fail_frames：两个计数同时清零，姿势不变；
    - 走完全部姿势后进入结束状态，之后的帧全部忽略。
    """

    def __init__(
        self,
        reference_poses: Sequence[ReferencePose],
        config: Optional[TrackerConfig] = None,
        comparator: Comparator = compare_keypoints_angle_based,
    ) -> None:
        self._poses = list(reference_poses)
        self.cfg = config or TrackerConfig()
        self._compare = comparator
        self._state = TrackerState()
        self.last_diff: Optional[float] = None

    @property
    def state(self) -> TrackerState:
        return replace(self._state)

    @property
    def current_index(self) -> int:
        return self._state.current_index

    @property
    def total(self) -> int:
        return len(self._poses)

    @property
    def finished(self) -> bool:
        return self._state.current_index >= len(self._poses)

    @property
    def current_pose(self) -> Optional[ReferencePose]:
        if self.finished:
            return None
        return self._poses[self._state.current_index]

    def _reset_streaks(self) -> None:
        self._state.success_streak = 0
        self._state.fail_streak = 0

    def _advance(self) -> TrackerEvent:
        self._state.current_index += 1
        self._reset_streaks()
        if self.finished:
            return TrackerEvent.FINISHED
        return TrackerEvent.ADVANCED

    def update(self, keypoints: Optional[KeypointSet]) -> TrackerEvent:
        """处理一帧。

        输入: keypoints 为用户关键点；None 表示本帧没有可用姿态（按失败帧处理）。
        输出: TrackerEvent。
        """
        pose = self.current_pose
        if pose is None:
            return TrackerEvent.NONE

        diff = self._compare(keypoints or [], pose.keypoints)
        self.last_diff = diff
        if diff < self.cfg.match_threshold:
            self._state.success_streak += 1
        else:
            self._state.fail_streak += 1

        if self._state.success_streak >= self.cfg.required_frames:
            return self._advance()
        if self._state.fail_streak > self.cfg.max_fail_frames:
            self._reset_streaks()
            return TrackerEvent.RESET
        return TrackerEvent.NONE

    def skip(self) -> TrackerEvent:
        """手动跳过当前姿势，与连续匹配成功的前进逻辑一致。"""
        if self.finished:
            return TrackerEvent.NONE
        return self._advance()
