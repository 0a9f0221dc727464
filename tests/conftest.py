from __future__ import annotations

import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtWidgets import QApplication  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    """offscreen 平台的 QApplication，让 QObject/QTimer/QPixmap 可以在无显示环境中创建。"""
    app = QApplication.instance() or QApplication([])
    yield app
