from __future__ import annotations


class PoseGameError(RuntimeError):
    """姿势闯关相关错误的基类。"""


class AcquisitionError(PoseGameError):
    """摄像头或姿态模型不可用（致命，开始失败）。"""


class DataLoadError(PoseGameError):
    """标准姿势数据读取/解析失败（致命，开始失败）。"""


class PoseOrderError(PoseGameError):
    """在约束下无法生成姿势顺序，或约束配置本身非法。"""


class AssetResolutionError(PoseGameError):
    """姿势图片在两种文件名下都不存在（非致命）。"""
