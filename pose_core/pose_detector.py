from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .errors import AcquisitionError
from .types import Keypoint, KeypointSet


# COCO-17 名称 -> MediaPipe Pose 33 点索引
COCO17_TO_MEDIAPIPE: dict[str, int] = {
    "nose": 0,
    "left_eye": 2,
    "right_eye": 5,
    "left_ear": 7,
    "right_ear": 8,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
}


@dataclass(frozen=True)
class PoseDetectorConfig:
    model_complexity: int = 1
    min_detection_confidence: float = 0.5
    min_tracking_confidence: float = 0.5


def landmarks_to_keypoints(landmarks_33x4: np.ndarray, width: int, height: int) -> KeypointSet:
    """把 (33,4) 归一化关键点转换为 COCO-17 命名的像素坐标关键点。

    输入: landmarks_33x4 每行为 x,y,z,visibility；width/height 为画面尺寸。
    输出: KeypointSet，visibility 作为 score。
    """
    out: KeypointSet = []
    for name, idx in COCO17_TO_MEDIAPIPE.items():
        row = landmarks_33x4[idx]
        out.append(
            Keypoint(
                name=name,
                x=float(row[0]) * float(width),
                y=float(row[1]) * float(height),
                score=float(row[3]),
            )
        )
    return out


class PoseDetector:
    """MediaPipe Pose 的薄封装。业务层只拿到 KeypointSet，不暴露 MediaPipe 对象。"""

    def __init__(self, config: Optional[PoseDetectorConfig] = None):
        """初始化 PoseDetector。

        输入:
        - config: 可选的 PoseDetectorConfig，用于控制模型复杂度与置信度阈值。

        输出: 无（构造器）。

        作用: 延迟导入 mediapipe 并创建 Pose 推理对象；失败时抛出 AcquisitionError。
        """
        self._config = config or PoseDetectorConfig()
        # 延迟导入，避免没有安装 mediapipe 时 import 直接炸
        try:
            import mediapipe as mp
        except ImportError as e:
            raise AcquisitionError("未安装 mediapipe，无法创建姿态模型") from e

        try:
            self._pose = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=self._config.model_complexity,
                enable_segmentation=False,
                smooth_landmarks=True,
                min_detection_confidence=self._config.min_detection_confidence,
                min_tracking_confidence=self._config.min_tracking_confidence,
            )
        except Exception as e:
            raise AcquisitionError(f"姿态模型加载失败：{e}") from e

    def detect_landmarks(self, frame_bgr: np.ndarray) -> Optional[np.ndarray]:
        """返回 (33,4) 的 numpy 数组：x,y,z,visibility，单位为归一化坐标。

        输入:
        - frame_bgr: BGR 格式的图像帧，numpy 数组，形状 (h,w,3)。

        输出:
        - 若检测到人体，返回 shape 为 (33,4) 的 numpy.ndarray（float32）；
        - 若未检测到人体或输入无效，返回 None。
        """
        if frame_bgr is None or frame_bgr.size == 0:
            return None

        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        result = self._pose.process(frame_rgb)
        if result.pose_landmarks is None:
            return None

        lm = result.pose_landmarks.landmark
        data = np.zeros((33, 4), dtype=np.float32)
        for i in range(33):
            data[i, 0] = lm[i].x
            data[i, 1] = lm[i].y
            data[i, 2] = lm[i].z
            data[i, 3] = lm[i].visibility
        return data

    def estimate(self, frame_bgr: np.ndarray) -> list[KeypointSet]:
        """估计单帧中的人体姿态。

        输出: 候选姿态列表（MediaPipe Pose 为单人模型，最多一个）；未检测到返回空列表。
        """
        data = self.detect_landmarks(frame_bgr)
        if data is None:
            return []
        h, w = frame_bgr.shape[:2]
        return [landmarks_to_keypoints(data, w, h)]

    def close(self) -> None:
        """释放内部 MediaPipe 资源，调用后不应再使用该实例。"""
        self._pose.close()
