from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .camera import CameraConfig
from .pose_detector import PoseDetectorConfig
from .scoring import ScoringConfig
from .sequencer import SequencerConfig
from .session import SessionConfig
from .tracker import TrackerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppConfig:
    camera: CameraConfig = field(default_factory=CameraConfig)
    detector: PoseDetectorConfig = field(default_factory=PoseDetectorConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    sequencer: SequencerConfig = field(default_factory=SequencerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    obj = raw.get(key)
    return obj if isinstance(obj, dict) else {}


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_bool(v: Any, default: bool) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return bool(v)
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(default)


def _try_int(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _as_ids(v: Any, default: tuple[int, ...]) -> tuple[int, ...]:
    if not isinstance(v, list):
        return default
    ids: list[int] = []
    for item in v:
        i = _try_int(item)
        if i is None:
            logger.warning("忽略无法解析的姿势编号：%r", item)
            continue
        ids.append(i)
    return tuple(ids)


def _as_pairs(v: Any, default: tuple[tuple[int, int], ...]) -> tuple[tuple[int, int], ...]:
    if not isinstance(v, list):
        return default
    pairs: list[tuple[int, int]] = []
    for item in v:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            logger.warning("忽略格式错误的禁止相邻姿势对：%r", item)
            continue
        a, b = _try_int(item[0]), _try_int(item[1])
        if a is None or b is None:
            logger.warning("忽略无法解析的禁止相邻姿势对：%r", item)
            continue
        pairs.append((a, b))
    return tuple(pairs)


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    """从 dict 构造 AppConfig。未知字段忽略，缺失字段用默认值。"""
    d = AppConfig()

    cam = _section(raw, "camera")
    det = _section(raw, "detector")
    sc = _section(raw, "scoring")
    tr = _section(raw, "tracker")
    seq = _section(raw, "sequencer")
    ses = _section(raw, "session")

    return AppConfig(
        camera=CameraConfig(
            index=_as_int(cam.get("index"), d.camera.index),
            width=_as_int(cam.get("width"), d.camera.width),
            height=_as_int(cam.get("height"), d.camera.height),
            mirror=_as_bool(cam.get("mirror"), d.camera.mirror),
        ),
        detector=PoseDetectorConfig(
            model_complexity=_as_int(det.get("model_complexity"), d.detector.model_complexity),
            min_detection_confidence=_as_float(det.get("min_detection_confidence"), d.detector.min_detection_confidence),
            min_tracking_confidence=_as_float(det.get("min_tracking_confidence"), d.detector.min_tracking_confidence),
        ),
        scoring=ScoringConfig(
            confidence_threshold=_as_float(sc.get("confidence_threshold"), d.scoring.confidence_threshold),
        ),
        tracker=TrackerConfig(
            match_threshold=_as_float(tr.get("match_threshold"), d.tracker.match_threshold),
            required_frames=max(1, _as_int(tr.get("required_frames"), d.tracker.required_frames)),
            max_fail_frames=max(0, _as_int(tr.get("max_fail_frames"), d.tracker.max_fail_frames)),
        ),
        sequencer=SequencerConfig(
            poses_dir=str(seq.get("poses_dir") or d.sequencer.poses_dir),
            pose_ids=_as_ids(seq.get("pose_ids"), d.sequencer.pose_ids),
            forbidden_pairs=_as_pairs(seq.get("forbidden_pairs"), d.sequencer.forbidden_pairs),
            max_attempts=max(1, _as_int(seq.get("max_attempts"), d.sequencer.max_attempts)),
        ),
        session=SessionConfig(
            frame_interval_ms=max(1, _as_int(ses.get("frame_interval_ms"), d.session.frame_interval_ms)),
        ),
    )


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """读取 JSON 配置文件。

    输入: path 配置文件路径；None 或文件不存在时使用默认配置。
    输出: AppConfig。
    作用: 文件格式错误时记警告并回退到默认配置，保证程序可以启动。
    """
    if not path:
        return AppConfig()
    p = Path(path).expanduser()
    if not p.exists():
        logger.warning("配置文件不存在：%s，使用默认配置", p)
        return AppConfig()
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("配置文件读取失败：%s（%s），使用默认配置", p, e)
        return AppConfig()
    if not isinstance(raw, dict):
        logger.warning("配置文件顶层必须是对象：%s，使用默认配置", p)
        return AppConfig()
    return parse_config(raw)
