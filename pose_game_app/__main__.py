from __future__ import annotations

import argparse
import logging
import random
import sys
from dataclasses import replace
from typing import Optional

from PySide6.QtWidgets import QApplication

from pose_core.config import AppConfig, load_config
from pose_game_app.ui.main_window import MainWindow


def build_config(args: argparse.Namespace) -> AppConfig:
    """读取配置文件并用命令行参数覆盖。"""
    cfg = load_config(args.config)
    if args.poses_dir:
        cfg = replace(cfg, sequencer=replace(cfg.sequencer, poses_dir=args.poses_dir))
    if args.camera is not None:
        cfg = replace(cfg, camera=replace(cfg.camera, index=args.camera))
    return cfg


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="姿势闯关：跟着标准姿势摆动作，保持住即可过关。")
    parser.add_argument("--config", default=None, help="JSON 配置文件路径。")
    parser.add_argument("--poses-dir", default=None, help="标准姿势目录（pose{id}.json / pose{id}.png）。")
    parser.add_argument("--camera", type=int, default=None, help="摄像头编号。")
    parser.add_argument("--seed", type=int, default=None, help="姿势顺序的随机种子。")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main() -> int:
    """应用入口：解析参数、配置日志、创建 QApplication 与主窗口并运行事件循环。

    输出: 应用退出码（int）。
    """
    args = parse_args()
    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s:%(name)s:%(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(levelname)s:%(name)s:%(message)s')

    cfg = build_config(args)
    rng = random.Random(args.seed) if args.seed is not None else None

    app = QApplication(sys.argv)
    w = MainWindow(cfg, rng)
    w.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
