from __future__ import annotations

import logging
import random
from typing import Optional

import cv2
import numpy as np
from PySide6.QtCore import QObject, Qt, Slot
from PySide6.QtGui import QImage, QPixmap

from pose_core.camera import OpenCVCamera
from pose_core.config import AppConfig
from pose_core.errors import AcquisitionError, DataLoadError, PoseOrderError
from pose_core.pose_connections import DISPLAY_CONFIDENCE_THRESHOLD, POSE_CONNECTIONS
from pose_core.pose_detector import PoseDetector
from pose_core.sequencer import PoseSequencer
from pose_core.session import PoseSession, SessionState
from pose_core.types import KeypointSet, ReferencePose, find_keypoint

from .view_protocol import GameView

logger = logging.getLogger(__name__)

# BGR
REFERENCE_COLOR = (255, 0, 0)
USER_COLOR = (0, 0, 255)


def _bgr_to_qpixmap(frame_bgr: np.ndarray, max_w: int, max_h: int) -> QPixmap:
    """BGR 帧转 QPixmap 并按最大尺寸等比缩放。

    输入: frame_bgr (h,w,3) BGR 图像；max_w/max_h 最大显示尺寸。
    输出: QPixmap。
    """
    h, w = frame_bgr.shape[:2]
    rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
    qimg = QImage(rgb.data, w, h, rgb.strides[0], QImage.Format.Format_RGB888)
    pm = QPixmap.fromImage(qimg.copy())
    return pm.scaled(
        max_w,
        max_h,
        Qt.AspectRatioMode.KeepAspectRatio,
        Qt.TransformationMode.SmoothTransformation,
    )


def draw_keypoints_bgr(
    frame_bgr: np.ndarray,
    keypoints: Optional[KeypointSet],
    color: tuple[int, int, int],
    radius: int = 6,
    alpha: float = 1.0,
) -> np.ndarray:
    """在 BGR 帧上叠加关键点与骨架连线。

    输入: frame_bgr 原始图像；keypoints 像素坐标关键点；color/radius/alpha 绘制参数。
    输出: 带叠加的图像副本。
    作用: 只绘制置信度超过显示阈值（0.4）的点与两端都可见的连线。
    """
    if not keypoints:
        return frame_bgr
    overlay = frame_bgr.copy()

    for a, b in POSE_CONNECTIONS:
        ka = find_keypoint(keypoints, a)
        kb = find_keypoint(keypoints, b)
        if ka is None or kb is None:
            continue
        if ka.score <= DISPLAY_CONFIDENCE_THRESHOLD or kb.score <= DISPLAY_CONFIDENCE_THRESHOLD:
            continue
        cv2.line(overlay, (int(ka.x), int(ka.y)), (int(kb.x), int(kb.y)), color, 2)

    for kp in keypoints:
        if kp.score <= DISPLAY_CONFIDENCE_THRESHOLD:
            continue
        cv2.circle(overlay, (int(kp.x), int(kp.y)), radius, color, -1)

    if alpha >= 1.0:
        return overlay
    return cv2.addWeighted(overlay, alpha, frame_bgr, 1.0 - alpha, 0.0)


def render_frame(
    frame_bgr: np.ndarray,
    reference: Optional[KeypointSet],
    user: Optional[KeypointSet],
    mirror: bool = True,
) -> np.ndarray:
    """叠加标准姿势（蓝，半透明）与用户姿势（红），按需左右镜像。"""
    out = draw_keypoints_bgr(frame_bgr, reference, REFERENCE_COLOR, 6, 0.5)
    out = draw_keypoints_bgr(out, user, USER_COLOR, 6, 1.0)
    if mirror:
        out = cv2.flip(out, 1)
    return out


class GameController(QObject):
    """控制器：承接UI事件，调用 PoseSession；UI通过 GameView 暴露的接口更新。"""

    def __init__(
        self,
        view: GameView,
        config: Optional[AppConfig] = None,
        rng: Optional[random.Random] = None,
        session: Optional[PoseSession] = None,
    ):
        """初始化控制器。

        输入: view 为实现 GameView 协议的视图对象；config 应用配置；rng 可选随机数生成器；
              session 可选的现成会话（不传则按配置用真实摄像头与 MediaPipe 组装）。
        作用: 组装会话并连接会话信号。
        """
        super().__init__()
        self._view = view
        self._cfg = config or AppConfig()
        self._current_pose: Optional[ReferencePose] = None

        if session is None:
            session = PoseSession(
                sequencer=PoseSequencer(self._cfg.sequencer, rng=rng),
                camera_factory=lambda: OpenCVCamera(self._cfg.camera),
                estimator_factory=lambda: PoseDetector(self._cfg.detector),
                config=self._cfg.session,
                tracker_config=self._cfg.tracker,
                scoring_config=self._cfg.scoring,
                parent=self,
            )
        self._session = session
        self._session.session_started.connect(self._on_session_started)
        self._session.pose_changed.connect(self._on_pose_changed)
        self._session.session_finished.connect(self._on_session_finished)
        self._session.session_aborted.connect(self._on_session_aborted)
        self._session.frame_processed.connect(self._on_frame_processed)

    @property
    def session(self) -> PoseSession:
        return self._session

    def start(self) -> None:
        """开始/重新开始闯关；失败时按错误类型弹窗，会话保持 IDLE 等待用户重试。"""
        self._view.set_status("正在打开摄像头与姿态模型…", 0)
        result = self._session.start()
        if result.ok:
            return
        err = result.error
        if isinstance(err, AcquisitionError):
            title = "摄像头/模型错误"
        elif isinstance(err, DataLoadError):
            title = "标准姿势加载失败"
        elif isinstance(err, PoseOrderError):
            title = "姿势顺序配置错误"
        else:
            title = "开始失败"
        self._view.set_status("开始失败", 3000)
        self._view.set_playing(False)
        self._view.show_error(title, str(err))

    def skip(self) -> None:
        """手动跳过当前姿势（点击画面）。"""
        if self._session.state is SessionState.ACTIVE:
            self._session.skip_current()

    def stop(self) -> None:
        self._session.stop()

    @Slot()
    def _on_session_started(self) -> None:
        self._view.set_playing(True)
        self._view.set_status("开始！摆出图片中的姿势并保持住", 3000)

    @Slot(object)
    def _on_pose_changed(self, pose: object) -> None:
        if not isinstance(pose, ReferencePose):
            return
        self._current_pose = pose
        tracker = self._session.tracker
        if tracker is not None:
            self._view.set_progress(tracker.current_index + 1, tracker.total)
        pixmap = None
        if pose.image_path:
            pm = QPixmap(pose.image_path)
            if not pm.isNull():
                pixmap = pm
            else:
                logger.warning("姿势图片无法解码：%s", pose.image_path)
        self._view.set_pose_pixmap(pixmap)

    @Slot()
    def _on_session_finished(self) -> None:
        self._current_pose = None
        self._view.set_pose_pixmap(None)
        self._view.set_playing(False)
        self._view.set_status("全部姿势完成！", 0)

    @Slot(str)
    def _on_session_aborted(self, reason: str) -> None:
        self._current_pose = None
        self._view.set_pose_pixmap(None)
        self._view.set_playing(False)
        self._view.set_status(f"本局已停止：{reason}", 5000)

    @Slot(object, object)
    def _on_frame_processed(self, frame: object, user: object) -> None:
        if not isinstance(frame, np.ndarray):
            return
        reference = self._current_pose.keypoints if self._current_pose is not None else None
        out = render_frame(frame, reference, user if isinstance(user, list) else None, self._cfg.camera.mirror)
        self._view.set_camera_pixmap(_bgr_to_qpixmap(out, 800, 600))

    def close(self) -> None:
        """关闭控制器：停止帧循环并释放摄像头与模型。应在窗口关闭时调用。"""
        self._session.close()
