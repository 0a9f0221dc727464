from __future__ import annotations

import random
from typing import Optional

from PySide6.QtCore import Qt
from PySide6.QtGui import QPixmap
from PySide6.QtWidgets import (
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QStatusBar,
    QVBoxLayout,
    QWidget,
)

from pose_core.config import AppConfig
from pose_game_app.controller.game_controller import GameController


class MainWindow(QMainWindow):
    def __init__(self, config: Optional[AppConfig] = None, rng: Optional[random.Random] = None):
        """初始化主窗口并构造控制器。

        输入: config 应用配置；rng 可选随机数生成器（固定种子时使用）。
        作用: 设置窗口属性，创建控制器并搭建 UI 与事件绑定。
        """
        super().__init__()
        self.setWindowTitle("姿势闯关（MediaPipe + PySide6）")
        self.resize(1200, 700)

        self._controller = GameController(self, config, rng)

        self._build_ui()
        self._wire_events()

    def _build_ui(self) -> None:
        """构建界面控件与布局。"""
        root = QWidget(self)
        self.setCentralWidget(root)

        self.btn_start = QPushButton("开始")
        self.btn_restart = QPushButton("再来一次")
        self.btn_restart.hide()
        self.btn_stop = QPushButton("停止")
        self.btn_stop.setEnabled(False)

        self.lbl_camera = QLabel("摄像头画面（点击画面可跳过当前姿势）")
        self.lbl_camera.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.lbl_camera.setMinimumSize(640, 480)

        self.lbl_pose = QLabel("标准姿势")
        self.lbl_pose.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.lbl_pose.setMinimumSize(320, 480)

        self.lbl_progress = QLabel("进度：--")
        self.lbl_progress.setAlignment(Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignVCenter)

        grp_controls = QGroupBox("操作")
        controls_layout = QHBoxLayout(grp_controls)
        controls_layout.addWidget(self.btn_start)
        controls_layout.addWidget(self.btn_restart)
        controls_layout.addWidget(self.btn_stop)
        controls_layout.addStretch(1)
        controls_layout.addWidget(self.lbl_progress)

        views = QHBoxLayout()
        views.addWidget(self.lbl_camera, 2)
        views.addWidget(self.lbl_pose, 1)

        layout = QVBoxLayout(root)
        layout.addWidget(grp_controls)
        layout.addLayout(views)

        self._status = QStatusBar(self)
        self.setStatusBar(self._status)

    def _wire_events(self) -> None:
        self.btn_start.clicked.connect(self._controller.start)
        self.btn_restart.clicked.connect(self._controller.start)
        self.btn_stop.clicked.connect(self._controller.stop)

    def mousePressEvent(self, event) -> None:
        """点击画面任意非按钮区域：手动跳过当前姿势。"""
        if event.button() == Qt.MouseButton.LeftButton:
            self._controller.skip()
        super().mousePressEvent(event)

    # ====== 供控制器调用（视图接口） ======

    def set_status(self, message: str, timeout_ms: int = 3000) -> None:
        self.statusBar().showMessage(message, timeout_ms)

    def show_error(self, title: str, message: str) -> None:
        QMessageBox.critical(self, title, message)

    def set_camera_pixmap(self, pixmap: QPixmap) -> None:
        self.lbl_camera.setPixmap(pixmap)

    def set_pose_pixmap(self, pixmap: Optional[QPixmap]) -> None:
        """更新标准姿势图片；None 时清空并显示提示文字。"""
        if pixmap is None:
            self.lbl_pose.clear()
            self.lbl_pose.setText("标准姿势")
            return
        self.lbl_pose.setPixmap(
            pixmap.scaled(
                self.lbl_pose.width(),
                self.lbl_pose.height(),
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.SmoothTransformation,
            )
        )

    def set_progress(self, current: int, total: int) -> None:
        self.lbl_progress.setText(f"进度：{current}/{total}")

    def set_playing(self, playing: bool) -> None:
        """进行中隐藏开始/重来按钮；结束后只显示“再来一次”。"""
        self.btn_start.hide()
        self.btn_restart.setVisible(not playing)
        self.btn_stop.setEnabled(playing)

    def closeEvent(self, event) -> None:
        """窗口关闭钩子：释放控制器资源后再关闭。"""
        try:
            self._controller.close()
        finally:
            super().closeEvent(event)
