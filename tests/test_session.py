from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import numpy as np
import pytest

from pose_core.errors import AcquisitionError, DataLoadError, PoseOrderError
from pose_core.sequencer import PoseSequencer, SequencerConfig
from pose_core.session import PoseSession, SessionState
from pose_core.tracker import TrackerEvent, TrackerState

from pose_factory import make_keypoints, pose_keypoints, write_pose_dir

ORDER = [3, 1, 6, 2, 7, 4, 5]


class FakeCamera:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.released = False

    def read(self):
        if not self.ok:
            return False, None
        return True, np.zeros((48, 64, 3), dtype=np.uint8)

    def release(self) -> None:
        self.released = True


class FakeEstimator:
    def __init__(self):
        self.outputs: list = []
        self.hook: Optional[Callable[[], None]] = None
        self.closed = False

    def estimate(self, frame_bgr):
        if self.hook is not None:
            self.hook()
        if not self.outputs:
            return []
        out = self.outputs.pop(0)
        if isinstance(out, Exception):
            raise out
        return out

    def close(self) -> None:
        self.closed = True


class FixedOrderSequencer(PoseSequencer):
    def __init__(self, config: SequencerConfig, order: list[int]):
        super().__init__(config)
        self._order = order

    def generate_order(self) -> list[int]:
        return list(self._order)


class Recorder:
    def __init__(self, session: PoseSession):
        self.events: list[tuple] = []
        session.session_started.connect(lambda: self.events.append(("started",)))
        session.pose_changed.connect(lambda pose: self.events.append(("pose", pose.id)))
        session.session_finished.connect(lambda: self.events.append(("finished",)))
        session.session_aborted.connect(lambda reason: self.events.append(("aborted", reason)))
        session.frame_processed.connect(lambda frame, user: self.events.append(("frame", user is not None)))
        self.states: list[SessionState] = []
        session.state_changed.connect(self.states.append)

    def names(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def poses_dir(tmp_path: Path) -> Path:
    return write_pose_dir(tmp_path / "poses", list(range(1, 8)))


@pytest.fixture
def devices():
    return {"camera": FakeCamera(), "estimator": FakeEstimator()}


@pytest.fixture
def make_session(poses_dir: Path, devices):
    created: list[PoseSession] = []

    def _make(order: Optional[list[int]] = None, **kwargs) -> PoseSession:
        cfg = SequencerConfig(poses_dir=str(poses_dir))
        sequencer = FixedOrderSequencer(cfg, order or ORDER)
        kwargs.setdefault("camera_factory", lambda: devices["camera"])
        kwargs.setdefault("estimator_factory", lambda: devices["estimator"])
        session = PoseSession(sequencer=sequencer, **kwargs)
        created.append(session)
        return session

    yield _make
    for s in created:
        s.close()


def _feed(session: PoseSession, keypoints, n: int) -> list[TrackerEvent]:
    return [session.on_frame(keypoints) for _ in range(n)]


def test_start_loads_order_and_begins_loop(make_session, devices):
    session = make_session()
    rec = Recorder(session)

    result = session.start()

    assert result.ok and result.error is None
    assert session.state is SessionState.ACTIVE
    assert session.order == ORDER
    assert [p.id for p in session.reference_poses] == ORDER
    assert session.is_running
    assert rec.events == [("started",), ("pose", 3)]
    assert session.tracker.state == TrackerState(0, 0, 0)


def test_default_sequencer_respects_forbidden_pair(poses_dir, devices):
    session = PoseSession(
        sequencer=PoseSequencer(SequencerConfig(poses_dir=str(poses_dir))),
        camera_factory=lambda: devices["camera"],
        estimator_factory=lambda: devices["estimator"],
    )
    try:
        assert session.start().ok
        order = session.order
        assert sorted(order) == list(range(1, 8))
        assert all({a, b} != {5, 7} for a, b in zip(order, order[1:]))
    finally:
        session.close()


def test_end_to_end_advance_then_cooldown(make_session):
    session = make_session()
    rec = Recorder(session)
    session.start()

    events = _feed(session, pose_keypoints(3), 50)
    assert events[-1] is TrackerEvent.ADVANCED
    assert session.tracker.current_pose.id == 1
    assert rec.events[-1] == ("pose", 1)

    _feed(session, pose_keypoints(1), 40)
    events = _feed(session, make_keypoints(score=0.0), 11)
    assert events[-1] is TrackerEvent.RESET
    assert session.tracker.state == TrackerState(current_index=1, success_streak=0, fail_streak=0)
    assert session.tracker.current_pose.id == 1


def test_finish_releases_devices_and_ignores_frames(make_session, devices):
    session = make_session(order=[2, 5])
    rec = Recorder(session)
    session.start()

    _feed(session, pose_keypoints(2), 50)
    assert _feed(session, pose_keypoints(5), 50)[-1] is TrackerEvent.FINISHED

    assert session.state is SessionState.IDLE
    assert rec.states[-2:] == [SessionState.FINISHED, SessionState.IDLE]
    assert not session.is_running
    assert devices["camera"].released and devices["estimator"].closed
    assert rec.names() == ["started", "pose", "pose", "finished"]

    before = session.tracker.state
    assert session.on_frame(pose_keypoints(5)) is TrackerEvent.NONE
    assert session.skip_current() is TrackerEvent.NONE
    assert session.tracker.state == before == TrackerState(2, 0, 0)


def test_skip_on_last_pose_finishes_session(make_session):
    session = make_session()
    rec = Recorder(session)
    session.start()

    for _ in range(len(ORDER) - 1):
        assert session.skip_current() is TrackerEvent.ADVANCED
    assert session.tracker.current_index == len(ORDER) - 1
    assert session.skip_current() is TrackerEvent.FINISHED

    assert session.state is SessionState.IDLE
    assert SessionState.FINISHED in rec.states
    assert rec.names().count("pose") == len(ORDER)
    assert rec.names()[-1] == "finished"


def test_skip_ignored_when_not_active(make_session):
    session = make_session()
    assert session.skip_current() is TrackerEvent.NONE
    assert session.on_frame(pose_keypoints(3)) is TrackerEvent.NONE
    assert session.state is SessionState.IDLE


def test_camera_failure_aborts_start(make_session, devices):
    def broken_camera():
        raise AcquisitionError("无法打开摄像头 0")

    session = make_session(camera_factory=broken_camera)
    rec = Recorder(session)

    result = session.start()

    assert not result.ok
    assert isinstance(result.error, AcquisitionError)
    assert session.state is SessionState.IDLE
    assert not session.is_running
    assert rec.events == []


def test_model_failure_releases_camera(make_session, devices):
    def broken_model():
        raise AcquisitionError("未安装 mediapipe")

    session = make_session(estimator_factory=broken_model)
    result = session.start()

    assert isinstance(result.error, AcquisitionError)
    assert devices["camera"].released
    assert session.state is SessionState.IDLE


def test_model_factory_crash_is_acquisition_error(make_session, devices):
    def crashing_model():
        raise RuntimeError("GPU delegate init failed")

    session = make_session(estimator_factory=crashing_model)
    rec = Recorder(session)
    result = session.start()

    assert not result.ok
    assert isinstance(result.error, AcquisitionError)
    assert "GPU delegate init failed" in str(result.error)
    assert isinstance(result.error.__cause__, RuntimeError)
    assert session.state is SessionState.IDLE
    assert devices["camera"].released
    assert not session.is_running
    assert rec.events == []


def test_camera_factory_crash_is_acquisition_error(make_session):
    def crashing_camera():
        raise OSError("device busy")

    session = make_session(camera_factory=crashing_camera)
    result = session.start()

    assert isinstance(result.error, AcquisitionError)
    assert session.state is SessionState.IDLE


def test_malformed_forbidden_pair_is_order_error(poses_dir, devices):
    cfg = SequencerConfig(poses_dir=str(poses_dir), forbidden_pairs=((5,),))
    session = PoseSession(
        sequencer=PoseSequencer(cfg),
        camera_factory=lambda: devices["camera"],
        estimator_factory=lambda: devices["estimator"],
    )
    result = session.start()

    assert isinstance(result.error, PoseOrderError)
    assert session.state is SessionState.IDLE
    assert devices["camera"].released and devices["estimator"].closed


def test_unexpected_start_error_still_cleans_up(poses_dir, devices):
    class BrokenSequencer(PoseSequencer):
        def load_reference_poses(self, order):
            raise KeyError("pose")

    session = PoseSession(
        sequencer=BrokenSequencer(SequencerConfig(poses_dir=str(poses_dir))),
        camera_factory=lambda: devices["camera"],
        estimator_factory=lambda: devices["estimator"],
    )
    with pytest.raises(KeyError):
        session.start()

    assert session.state is SessionState.IDLE
    assert not session.is_running
    assert devices["camera"].released and devices["estimator"].closed


def test_estimator_closed_even_if_camera_release_fails(make_session, devices):
    class StuckCamera(FakeCamera):
        def release(self) -> None:
            raise RuntimeError("release failed")

    session = make_session(camera_factory=StuckCamera)
    session.start()

    with pytest.raises(RuntimeError, match="release failed"):
        session.close()

    assert devices["estimator"].closed


def test_missing_reference_data_aborts_start(make_session, devices):
    session = make_session(order=[1, 8])
    result = session.start()

    assert isinstance(result.error, DataLoadError)
    assert session.state is SessionState.IDLE
    assert session.tracker is None
    assert devices["camera"].released and devices["estimator"].closed


def test_order_error_aborts_start(poses_dir, devices):
    cfg = SequencerConfig(poses_dir=str(poses_dir), pose_ids=(1, 2), forbidden_pairs=((1, 2),), max_attempts=20)
    session = PoseSession(
        sequencer=PoseSequencer(cfg),
        camera_factory=lambda: devices["camera"],
        estimator_factory=lambda: devices["estimator"],
    )
    result = session.start()
    assert isinstance(result.error, PoseOrderError)
    assert session.state is SessionState.IDLE


def test_retry_after_failed_start(make_session, devices):
    attempts = []

    def flaky_camera():
        attempts.append(1)
        if len(attempts) == 1:
            raise AcquisitionError("busy")
        return devices["camera"]

    session = make_session(camera_factory=flaky_camera)
    assert not session.start().ok
    assert session.start().ok
    assert session.state is SessionState.ACTIVE


def test_stop_aborts_with_reason(make_session, devices):
    session = make_session()
    rec = Recorder(session)
    session.start()

    session.stop()

    assert session.state is SessionState.IDLE
    assert rec.states[-2:] == [SessionState.ABORTED, SessionState.IDLE]
    assert rec.events[-1] == ("aborted", "用户停止")
    assert not session.is_running
    assert devices["camera"].released
    assert session.skip_current() is TrackerEvent.NONE

    session.stop()
    assert rec.names().count("aborted") == 1


def test_restart_resets_progress(make_session):
    session = make_session()
    session.start()
    session.skip_current()
    _feed(session, pose_keypoints(1), 10)
    generation = session.generation

    assert session.start().ok
    assert session.generation > generation
    assert session.tracker.state == TrackerState(0, 0, 0)
    assert session.tracker.current_pose.id == 3


def test_step_feeds_first_candidate(make_session, devices):
    session = make_session()
    rec = Recorder(session)
    session.start()
    devices["estimator"].outputs = [[pose_keypoints(3), pose_keypoints(1)]]

    session.step()

    assert session.tracker.state == TrackerState(0, 1, 0)
    assert ("frame", True) in rec.events


def test_step_without_usable_pose_counts_as_failure(make_session, devices):
    session = make_session()
    rec = Recorder(session)
    session.start()
    devices["estimator"].outputs = [[], RuntimeError("model crashed")]

    session.step()
    session.step()

    assert session.tracker.state == TrackerState(0, 0, 2)
    assert session.state is SessionState.ACTIVE
    assert rec.events.count(("frame", False)) == 2


def test_step_camera_read_failure_aborts(make_session, devices):
    session = make_session()
    rec = Recorder(session)
    session.start()
    devices["camera"].ok = False

    session.step()

    assert session.state is SessionState.IDLE
    assert rec.events[-1] == ("aborted", "摄像头读取失败")


def test_stale_result_after_restart_is_discarded(make_session, devices):
    session = make_session()
    rec = Recorder(session)
    session.start()
    estimator = devices["estimator"]
    estimator.outputs = [[pose_keypoints(3)]]

    def restart_mid_frame():
        estimator.hook = None
        session.start()

    estimator.hook = restart_mid_frame
    session.step()

    assert session.state is SessionState.ACTIVE
    assert session.tracker.state == TrackerState(0, 0, 0)
    assert "frame" not in rec.names()


def test_step_is_noop_when_idle(make_session, devices):
    session = make_session()
    session.step()
    assert session.state is SessionState.IDLE
