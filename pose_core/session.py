from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Optional, Protocol

import numpy as np
from PySide6.QtCore import QObject, QTimer, Signal

from .camera import OpenCVCamera
from .errors import AcquisitionError, DataLoadError, PoseGameError
from .pose_detector import PoseDetector
from .scoring import ScoringConfig, compare_keypoints_angle_based
from .sequencer import PoseSequencer
from .tracker import MatchTracker, TrackerConfig, TrackerEvent
from .types import KeypointSet, ReferencePose

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    """画面来源接口（默认实现为 OpenCVCamera）。"""
    def read(self) -> tuple[bool, Optional[np.ndarray]]:
        ...

    def release(self) -> None:
        ...


class PoseEstimator(Protocol):
    """姿态估计接口（默认实现为 PoseDetector）。"""
    def estimate(self, frame_bgr: np.ndarray) -> list[KeypointSet]:
        ...

    def close(self) -> None:
        ...


class SessionState(Enum):
    """会话生命周期。FINISHED/ABORTED 只是发出信号时经过的状态，随后立即回到 IDLE。"""

    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    FINISHED = "finished"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SessionConfig:
    frame_interval_ms: int = 33  # ~30fps


@dataclass(frozen=True)
class StartResult:
    ok: bool
    error: Optional[PoseGameError] = None


class PoseSession(QObject):
    """一局姿势闯关：管理开始/结束/重来，持有姿势编排器与匹配状态机。

    帧循环由 QTimer 驱动，每个 tick 执行一次 step()：读帧 → 姿态估计 → 匹配更新。
    估计是同步调用，两次 step 不会重叠；停止/重开时先停计时器并递增 generation，
    step 发现 generation 变化会丢弃本帧结果。
    """

    session_started = Signal()
    pose_changed = Signal(object)  # ReferencePose
    session_finished = Signal()
    session_aborted = Signal(str)
    frame_processed = Signal(object, object)  # frame_bgr, KeypointSet | None
    state_changed = Signal(object)  # SessionState

    def __init__(
        self,
        sequencer: Optional[PoseSequencer] = None,
        camera_factory: Optional[Callable[[], FrameSource]] = None,
        estimator_factory: Optional[Callable[[], PoseEstimator]] = None,
        config: Optional[SessionConfig] = None,
        tracker_config: Optional[TrackerConfig] = None,
        scoring_config: Optional[ScoringConfig] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.cfg = config or SessionConfig()
        self._tracker_config = tracker_config or TrackerConfig()
        self._comparator = partial(compare_keypoints_angle_based, config=scoring_config or ScoringConfig())
        self._sequencer = sequencer or PoseSequencer()
        self._camera_factory: Callable[[], FrameSource] = camera_factory or OpenCVCamera
        self._estimator_factory: Callable[[], PoseEstimator] = estimator_factory or PoseDetector

        self._state = SessionState.IDLE
        self._generation = 0
        self._camera: Optional[FrameSource] = None
        self._estimator: Optional[PoseEstimator] = None
        self._tracker: Optional[MatchTracker] = None
        self._order: list[int] = []
        self._poses: list[ReferencePose] = []

        # 计时器归属 controller 所在线程
        self._timer = QTimer(self)
        self._timer.setInterval(self.cfg.frame_interval_ms)
        self._timer.timeout.connect(self.step)

    # ====== 只读状态 ======

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def tracker(self) -> Optional[MatchTracker]:
        return self._tracker

    @property
    def order(self) -> list[int]:
        return list(self._order)

    @property
    def reference_poses(self) -> list[ReferencePose]:
        return list(self._poses)

    @property
    def is_running(self) -> bool:
        return self._timer.isActive()

    # ====== 生命周期 ======

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.info("会话状态：%s -> %s", self._state.value, state.value)
        self._state = state
        self.state_changed.emit(state)

    def _cancel_loop(self) -> None:
        if self._timer.isActive():
            self._timer.stop()
        self._generation += 1

    def _release_devices(self) -> None:
        camera, self._camera = self._camera, None
        estimator, self._estimator = self._estimator, None
        try:
            if camera is not None:
                camera.release()
        finally:
            if estimator is not None:
                estimator.close()

    def _acquire_devices(self) -> None:
        try:
            self._camera = self._camera_factory()
        except PoseGameError:
            raise
        except Exception as e:
            raise AcquisitionError(f"无法打开摄像头：{e}") from e
        try:
            self._estimator = self._estimator_factory()
        except PoseGameError:
            raise
        except Exception as e:
            raise AcquisitionError(f"姿态模型创建失败：{e}") from e

    def start(self) -> StartResult:
        """开始（或重新开始）一局。

        输入/输出: 无输入；返回 StartResult，失败时携带异常。
        作用: 打开摄像头与姿态模型、生成姿势顺序并加载标准姿势、初始化匹配状态机、启动帧循环。
              任一步失败都释放已获取的资源并回到 IDLE，不自动重试。
        """
        self._cancel_loop()
        self._release_devices()
        self._tracker = None
        self._order = []
        self._poses = []
        self._set_state(SessionState.STARTING)

        try:
            self._acquire_devices()
            order = self._sequencer.generate_order()
            if not order:
                raise DataLoadError("没有配置任何姿势")
            poses = self._sequencer.load_reference_poses(order)
        except PoseGameError as e:
            logger.error("开始失败：%s", e)
            self._release_devices()
            self._set_state(SessionState.IDLE)
            return StartResult(ok=False, error=e)
        except Exception:
            logger.exception("开始时出现未预期的错误")
            self._release_devices()
            self._set_state(SessionState.IDLE)
            raise

        self._order = list(order)
        self._poses = poses
        self._tracker = MatchTracker(poses, self._tracker_config, self._comparator)
        self._set_state(SessionState.ACTIVE)
        self.session_started.emit()
        self.pose_changed.emit(poses[0])
        self._timer.start()
        return StartResult(ok=True)

    def stop(self, reason: str = "用户停止") -> None:
        """中途停止本局。仅在 STARTING/ACTIVE 时有效，发出 session_aborted(reason)。"""
        if self._state not in (SessionState.STARTING, SessionState.ACTIVE):
            return
        self._cancel_loop()
        self._release_devices()
        self._set_state(SessionState.ABORTED)
        logger.info("本局已中止：%s", reason)
        self.session_aborted.emit(reason)
        # 槽函数里可能已经重新开始
        if self._state is SessionState.ABORTED:
            self._set_state(SessionState.IDLE)

    def _finish(self) -> None:
        self._cancel_loop()
        self._release_devices()
        self._set_state(SessionState.FINISHED)
        logger.info("全部 %d 个姿势完成", len(self._poses))
        self.session_finished.emit()
        if self._state is SessionState.FINISHED:
            self._set_state(SessionState.IDLE)

    def close(self) -> None:
        """窗口关闭时调用：停止循环并释放摄像头与模型，不发出任何信号。"""
        self._cancel_loop()
        self._release_devices()

    # ====== 帧处理 ======

    def step(self) -> None:
        """帧循环的一个 tick：读帧、估计姿态、更新匹配。"""
        if self._state is not SessionState.ACTIVE or self._camera is None or self._estimator is None:
            return
        generation = self._generation

        ok, frame = self._camera.read()
        if not ok or frame is None:
            self.stop("摄像头读取失败")
            return

        try:
            candidates = self._estimator.estimate(frame)
        except Exception:
            # 单帧估计失败不影响循环，按“本帧没有可用姿态”处理
            logger.warning("姿态估计失败，本帧记为未匹配", exc_info=True)
            candidates = []

        if generation != self._generation:
            logger.debug("丢弃过期帧结果（generation %d != %d）", generation, self._generation)
            return

        user = candidates[0] if candidates else None
        self.frame_processed.emit(frame, user)
        self.on_frame(user)

    def on_frame(self, keypoints: Optional[KeypointSet]) -> TrackerEvent:
        """把一帧用户关键点交给匹配状态机，并根据结果发出信号。

        输入: keypoints 为用户关键点；None 表示本帧没有可用姿态。
        输出: TrackerEvent；非 ACTIVE 状态下恒为 NONE。
        """
        if self._state is not SessionState.ACTIVE or self._tracker is None:
            return TrackerEvent.NONE
        event = self._tracker.update(keypoints)
        self._handle_event(event)
        return event

    def skip_current(self) -> TrackerEvent:
        """手动跳过当前姿势（点击画面），仅在 ACTIVE 时有效。"""
        if self._state is not SessionState.ACTIVE or self._tracker is None:
            return TrackerEvent.NONE
        pose = self._tracker.current_pose
        logger.info("手动跳过姿势 %s", pose.id if pose else "-")
        event = self._tracker.skip()
        self._handle_event(event)
        return event

    def _handle_event(self, event: TrackerEvent) -> None:
        tracker = self._tracker
        if tracker is None:
            return
        if event is TrackerEvent.ADVANCED:
            pose = tracker.current_pose
            logger.info("进入第 %d/%d 个姿势（编号 %s）", tracker.current_index + 1, tracker.total, pose.id if pose else "-")
            self.pose_changed.emit(pose)
        elif event is TrackerEvent.FINISHED:
            self._finish()
        elif event is TrackerEvent.RESET:
            logger.debug("连续未匹配超过上限，计数清零（平均角度差 %.1f）", tracker.last_diff or 0.0)
