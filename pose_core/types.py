from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .errors import DataLoadError


@dataclass(frozen=True)
class Keypoint:
    """单个二维关键点（像素坐标）。

    属性:
    - name: 关键点名称（COCO-17 命名，如 "left_shoulder"）。
    - x, y: 像素坐标。
    - score: 置信度 [0,1]。
    """

    name: str
    x: float
    y: float
    score: float


# 一帧的关键点集合；名称唯一性是约定，不做强制校验
KeypointSet = list[Keypoint]


@dataclass(frozen=True)
class ReferencePose:
    """标准姿势：编号、关键点与展示图片路径（图片可能缺失）。"""

    id: int
    keypoints: KeypointSet
    image_path: Optional[str] = None


def find_keypoint(keypoints: KeypointSet, name: str) -> Optional[Keypoint]:
    """按名称查找关键点。

    输入: keypoints 关键点集合；name 关键点名称。
    输出: 第一个同名 Keypoint，找不到返回 None。
    """
    for kp in keypoints:
        if kp.name == name:
            return kp
    return None


def _keypoint_from_json(item: Any) -> Keypoint:
    if not isinstance(item, dict):
        raise DataLoadError(f"关键点格式错误：{item!r}")
    try:
        x = float(item["x"])
        y = float(item["y"])
        score = float(item.get("score", 0.0) or 0.0)
    except (KeyError, TypeError, ValueError) as e:
        raise DataLoadError(f"关键点字段缺失或非数值：{item!r}") from e
    name = item.get("name", "")
    if not isinstance(name, str):
        raise DataLoadError(f"关键点名称必须为字符串：{item!r}")
    return Keypoint(name=name, x=x, y=y, score=score)


def keypoints_from_json(data: Any) -> KeypointSet:
    """把 JSON 数据解析为关键点集合。

    输入: data 为 {"keypoints": [...]} 或直接的 [...]。
    输出: KeypointSet。
    作用: 兼容两种标准姿势文件格式；结构不符时抛出 DataLoadError。
    """
    if isinstance(data, dict):
        if "keypoints" not in data:
            raise DataLoadError("姿势数据缺少 keypoints 字段")
        data = data["keypoints"]
    if not isinstance(data, list):
        raise DataLoadError("姿势数据必须是关键点数组")
    return [_keypoint_from_json(item) for item in data]
