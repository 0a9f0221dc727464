from __future__ import annotations

from typing import Optional, Protocol

from PySide6.QtGui import QPixmap


class GameView(Protocol):
    """闯关视图接口：控制器通过该协议调用视图更新。"""
    def set_status(self, message: str, timeout_ms: int = 3000) -> None:
        """更新状态栏。输入: 文本与超时毫秒。输出: 无。作用: 提示进度/状态。"""
        ...

    def show_error(self, title: str, message: str) -> None:
        """显示错误弹窗。输入: 标题与内容。输出: 无。"""
        ...

    def set_camera_pixmap(self, pixmap: QPixmap) -> None:
        """更新摄像头画面（已叠加骨架）。输入: QPixmap。输出: 无。"""
        ...

    def set_pose_pixmap(self, pixmap: Optional[QPixmap]) -> None:
        """更新标准姿势图片；None 表示清空。"""
        ...

    def set_progress(self, current: int, total: int) -> None:
        """显示闯关进度。输入: 当前第几个姿势（从 1 开始）与总数。"""
        ...

    def set_playing(self, playing: bool) -> None:
        """切换按钮状态：进行中隐藏开始/重来按钮，结束后显示重来按钮。"""
        ...
