from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .types import Keypoint, KeypointSet, find_keypoint


# 关节三元组 (A, B, C)：在 B 点计算 ∠ABC
ANGLE_TRIPLETS: list[tuple[str, str, str]] = [
    ("left_shoulder", "left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow", "right_wrist"),
    ("left_hip", "left_knee", "left_ankle"),
    ("right_hip", "right_knee", "right_ankle"),
    ("left_elbow", "left_shoulder", "left_hip"),
    ("right_elbow", "right_shoulder", "right_hip"),
]

# 没有任何可比较的关节时返回的差值，保证任何合理阈值下都判为不匹配
NO_MATCH_SCORE = 1000.0


@dataclass(frozen=True)
class ScoringConfig:
    confidence_threshold: float = 0.5


def joint_angle_deg(a: Keypoint, b: Keypoint, c: Keypoint) -> float:
    """计算 ∠ABC 的角度（度）。

    输入: a,b,c 为关键点。
    输出: 角度值（度），向量长度为 0 时返回 NaN。
    作用: 以 B→A 与 B→C 两向量夹角计算关节角。
    """
    ba = np.array([a.x - b.x, a.y - b.y], dtype=np.float64)
    bc = np.array([c.x - b.x, c.y - b.y], dtype=np.float64)
    denom = np.linalg.norm(ba) * np.linalg.norm(bc)
    if denom <= 1e-9:
        return float("nan")
    cosv = float(np.clip(np.dot(ba, bc) / denom, -1.0, 1.0))
    return float(np.degrees(np.arccos(cosv)))


def _confident(kp: Optional[Keypoint], th: float) -> bool:
    return kp is not None and kp.score > th


def _triplet_angle(keypoints: KeypointSet, triplet: tuple[str, str, str], th: float) -> float:
    pts = [find_keypoint(keypoints, name) for name in triplet]
    if not all(_confident(p, th) for p in pts):
        return float("nan")
    a, b, c = pts
    return joint_angle_deg(a, b, c)  # type: ignore[arg-type]


def joint_angles(keypoints: KeypointSet, config: Optional[ScoringConfig] = None) -> dict[str, float]:
    """计算六个关节角度，键为中间关节名（如 "left_elbow"）。

    不满足置信度的关节为 NaN。仅用于界面展示与调试。
    """
    cfg = config or ScoringConfig()
    return {b: _triplet_angle(keypoints, (a, b, c), cfg.confidence_threshold) for a, b, c in ANGLE_TRIPLETS}


def compare_keypoints_angle_based(
    user: KeypointSet,
    reference: KeypointSet,
    config: Optional[ScoringConfig] = None,
) -> float:
    """对比用户与标准姿势的关节角度，返回平均角度差（度，越小越像）。

    输入: user/reference 为关键点集合；config 可选评分配置。
    输出: 参与比较的关节角度差的平均值；没有任何关节可比较时返回 NO_MATCH_SCORE。
    作用: 只有三元组的六个点（用户 3 个 + 标准 3 个）置信度都超过阈值才参与比较；
          退化三元组（某条边长度为 0）角度为 NaN，同样不参与。
    """
    cfg = config or ScoringConfig()
    th = cfg.confidence_threshold

    total_diff = 0.0
    count = 0
    for triplet in ANGLE_TRIPLETS:
        angle_user = _triplet_angle(user, triplet, th)
        angle_ref = _triplet_angle(reference, triplet, th)
        if np.isnan(angle_user) or np.isnan(angle_ref):
            continue
        total_diff += abs(angle_user - angle_ref)
        count += 1

    if count == 0:
        return NO_MATCH_SCORE
    return total_diff / count
