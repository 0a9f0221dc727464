from __future__ import annotations

"""COCO-17 命名的骨架连接（仅用于画面叠加显示）。"""

# 显示用置信度阈值，比评分阈值（0.5）宽松
DISPLAY_CONFIDENCE_THRESHOLD = 0.4

# 连接对 (a, b)
POSE_CONNECTIONS: set[tuple[str, str]] = {
    # torso
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    # left arm
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    # right arm
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    # left leg
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    # right leg
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
}
