from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .errors import AssetResolutionError, DataLoadError, PoseOrderError
from .types import ReferencePose, keypoints_from_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SequencerConfig:
    poses_dir: str = "poses"
    pose_ids: tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7)
    # 不能相邻出现的姿势对（无序）
    forbidden_pairs: tuple[tuple[int, int], ...] = ((5, 7),)
    max_attempts: int = 10000


def _normalize_pairs(pairs: Iterable[Sequence[int]], ids: set[int]) -> set[frozenset[int]]:
    out: set[frozenset[int]] = set()
    for pair in pairs:
        try:
            a, b = (int(v) for v in pair)
        except (TypeError, ValueError) as e:
            raise PoseOrderError(f"禁止相邻的姿势对必须是两个编号：{pair!r}") from e
        if a == b:
            raise PoseOrderError(f"禁止相邻的姿势对不能是同一个编号：({a}, {b})")
        # 不在本局姿势集合里的约束没有意义
        if a in ids and b in ids:
            out.add(frozenset((a, b)))
    return out


def _has_forbidden_neighbors(order: Sequence[int], forbidden: set[frozenset[int]]) -> bool:
    return any(frozenset((x, y)) in forbidden for x, y in zip(order, order[1:]))


def generate_pose_order(
    pose_ids: Iterable[int],
    forbidden_pairs: Iterable[Sequence[int]] = (),
    rng: Optional[random.Random] = None,
    max_attempts: int = 10000,
) -> list[int]:
    """生成随机姿势顺序，且禁止的姿势对不相邻。

    输入:
    - pose_ids: 本局的姿势编号集合。
    - forbidden_pairs: 无序姿势对，两者不能前后相邻。
    - rng: 可选随机数生成器（测试时固定种子）。
    - max_attempts: 拒绝采样的最大次数。

    输出: 姿势编号的一个排列。

    作用: 反复做均匀随机洗牌直到满足约束；超过 max_attempts 仍失败（通常是约束无解）
          时抛出 PoseOrderError。
    """
    rng = rng or random.Random()
    order = sorted(set(pose_ids))
    forbidden = _normalize_pairs(forbidden_pairs, set(order))
    if not forbidden:
        rng.shuffle(order)
        return order

    for attempt in range(1, max_attempts + 1):
        rng.shuffle(order)
        if not _has_forbidden_neighbors(order, forbidden):
            logger.debug("姿势顺序在第 %d 次洗牌后满足约束：%s", attempt, order)
            return list(order)
    raise PoseOrderError(f"{max_attempts} 次洗牌后仍无法满足相邻约束，请检查配置")


class PoseSequencer:
    """姿势编排：生成顺序并从姿势目录加载标准姿势数据与图片。

    目录结构:
        <poses_dir>/pose{id}.json   关键点数据
        <poses_dir>/pose{id}.png    展示图片（或 .PNG）
    """

    def __init__(self, config: Optional[SequencerConfig] = None, rng: Optional[random.Random] = None):
        self.cfg = config or SequencerConfig()
        self._rng = rng or random.Random()

    @property
    def poses_dir(self) -> Path:
        return Path(self.cfg.poses_dir)

    def generate_order(self) -> list[int]:
        return generate_pose_order(
            self.cfg.pose_ids,
            self.cfg.forbidden_pairs,
            rng=self._rng,
            max_attempts=self.cfg.max_attempts,
        )

    def resolve_pose_image(self, pose_id: int) -> str:
        """按 png → PNG 的顺序查找姿势图片，先找到者为准；都不存在抛出 AssetResolutionError。"""
        for suffix in (".png", ".PNG"):
            path = self.poses_dir / f"pose{pose_id}{suffix}"
            if path.is_file():
                return str(path)
        raise AssetResolutionError(f"找不到姿势 {pose_id} 的图片")

    def load_reference_pose(self, pose_id: int) -> ReferencePose:
        """读取单个标准姿势。

        输入: pose_id 姿势编号。
        输出: ReferencePose；图片缺失时 image_path 为 None。
        作用: 数据文件缺失或格式错误抛出 DataLoadError；图片缺失只记警告。
        """
        path = self.poses_dir / f"pose{pose_id}.json"
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise DataLoadError(f"无法读取姿势数据：{path}") from e
        except ValueError as e:
            raise DataLoadError(f"姿势数据不是合法 JSON：{path}") from e
        keypoints = keypoints_from_json(raw)

        try:
            image_path: Optional[str] = self.resolve_pose_image(pose_id)
        except AssetResolutionError as e:
            logger.warning("%s，本姿势将不显示参考图", e)
            image_path = None
        return ReferencePose(id=pose_id, keypoints=keypoints, image_path=image_path)

    def load_reference_poses(self, order: Sequence[int]) -> list[ReferencePose]:
        poses = [self.load_reference_pose(i) for i in order]
        logger.info("已加载 %d 个标准姿势，顺序：%s", len(poses), list(order))
        return poses
