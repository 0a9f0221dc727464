from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .errors import AcquisitionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraConfig:
    index: int = 0
    width: int = 640
    height: int = 480
    # 显示时左右翻转（自拍视角），只影响画面，不影响关键点
    mirror: bool = True


class OpenCVCamera:
    """cv2.VideoCapture 的薄封装，打开失败直接抛出 AcquisitionError。"""

    def __init__(self, config: Optional[CameraConfig] = None):
        self.cfg = config or CameraConfig()
        self._cap: Optional[cv2.VideoCapture] = cv2.VideoCapture(self.cfg.index)
        if self._cap is None or not self._cap.isOpened():
            self.release()
            raise AcquisitionError(f"无法打开摄像头 {self.cfg.index}")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.cfg.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.cfg.height)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # 减少缓冲延迟

        w = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        h = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info("摄像头 %d 已打开：%dx%d", self.cfg.index, w, h)

    def read(self) -> tuple[bool, Optional[np.ndarray]]:
        if self._cap is None:
            return False, None
        ok, frame = self._cap.read()
        if not ok:
            return False, None
        return True, frame

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
