import threading
import time

import pytest

from dictation_pipeline.core.event_channel import EventChannel
from dictation_pipeline.core.model_manager import ModelLifecycleManager
from dictation_pipeline.exceptions import ModelLoadError
from dictation_pipeline.models.model_state import LifecycleEvent, ModelStatus


class FakeModel:
    def __init__(self, model_id):
        self.model_id = model_id


class RecordingLoader:
    def __init__(self, fail_for=(), delay_s=0.0):
        self.calls = []
        self.fail_for = set(fail_for)
        self.delay_s = delay_s

    def __call__(self, model_id):
        self.calls.append(model_id)
        if self.delay_s:
            time.sleep(self.delay_s)
        if model_id in self.fail_for:
            raise RuntimeError(f"weights for {model_id} missing")
        return FakeModel(model_id)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def drain(q):
    events = []
    while not q.empty():
        events.append(q.get_nowait())
    return events


def test_load_publishes_events_and_reports_ready():
    channel = EventChannel()
    events = channel.subscribe()
    manager = ModelLifecycleManager(RecordingLoader(), event_channel=channel)

    manager.load("small")

    handle = manager.status()
    assert handle.status is ModelStatus.READY
    assert handle.model_id == "small"
    assert [e.kind for e in drain(events)] == [LifecycleEvent.LOADING_STARTED, LifecycleEvent.LOADED]


def test_load_same_model_twice_is_noop():
    loader = RecordingLoader()
    manager = ModelLifecycleManager(loader)
    manager.load("small")
    manager.load("small")
    assert loader.calls == ["small"]


def test_concurrent_loads_leave_exactly_one_model_ready():
    loader = RecordingLoader(delay_s=0.05)
    manager = ModelLifecycleManager(loader)

    threads = [threading.Thread(target=manager.load, args=(model_id,)) for model_id in ("A", "B")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    handle = manager.status()
    assert handle.status is ModelStatus.READY
    assert handle.model_id in ("A", "B")
    assert handle.model_id == loader.calls[-1]
    assert manager.run(lambda model: model.model_id) == handle.model_id


def test_switch_waits_for_inflight_inference():
    manager = ModelLifecycleManager(RecordingLoader())
    manager.load("A")
    started = threading.Event()
    release = threading.Event()
    seen = []

    def slow_inference(model):
        started.set()
        release.wait(2.0)
        seen.append(model.model_id)
        return model.model_id

    worker = threading.Thread(target=manager.run, args=(slow_inference,))
    worker.start()
    assert started.wait(2.0)

    switcher = threading.Thread(target=manager.switch, args=("B",))
    switcher.start()
    time.sleep(0.05)
    # Still serving A while the inference holds the model
    assert manager.status().model_id == "A"
    assert switcher.is_alive()

    release.set()
    worker.join(2.0)
    switcher.join(2.0)
    assert seen == ["A"]
    assert manager.status().model_id == "B"
    assert manager.status().status is ModelStatus.READY


def test_status_does_not_block_during_load():
    gate = threading.Event()

    def blocking_loader(model_id):
        gate.wait(2.0)
        return FakeModel(model_id)

    manager = ModelLifecycleManager(blocking_loader)
    loader_thread = threading.Thread(target=manager.load, args=("A",))
    loader_thread.start()
    time.sleep(0.05)

    assert manager.status().status is ModelStatus.LOADING
    gate.set()
    loader_thread.join(2.0)
    assert manager.status().status is ModelStatus.READY


def test_failed_load_sets_error_and_publishes_failure():
    channel = EventChannel()
    events = channel.subscribe()
    manager = ModelLifecycleManager(RecordingLoader(fail_for={"large"}), event_channel=channel)

    with pytest.raises(ModelLoadError) as excinfo:
        manager.load("large")

    assert excinfo.value.model_id == "large"
    handle = manager.status()
    assert handle.status is ModelStatus.ERROR
    assert "missing" in handle.error
    kinds = [e.kind for e in drain(events)]
    assert kinds == [LifecycleEvent.LOADING_STARTED, LifecycleEvent.LOADING_FAILED]


def test_run_without_model_raises():
    manager = ModelLifecycleManager(RecordingLoader())
    with pytest.raises(ModelLoadError):
        manager.run(lambda model: None)


def test_idle_unload_and_transparent_reload():
    clock = FakeClock()
    loader = RecordingLoader()
    channel = EventChannel()
    events = channel.subscribe()
    manager = ModelLifecycleManager(loader, idle_timeout_s=60, event_channel=channel, clock=clock)
    manager.load("small")

    clock.now += 30
    assert not manager.check_idle()
    assert manager.status().status is ModelStatus.READY

    clock.now += 31
    assert manager.check_idle()
    assert manager.status().status is ModelStatus.UNLOADED
    assert drain(events)[-1].kind is LifecycleEvent.UNLOADED

    assert manager.run(lambda model: model.model_id) == "small"
    assert loader.calls == ["small", "small"]
    assert manager.status().status is ModelStatus.READY


def test_activity_postpones_idle_unload():
    clock = FakeClock()
    manager = ModelLifecycleManager(RecordingLoader(), idle_timeout_s=60, clock=clock)
    manager.load("small")

    clock.now += 50
    manager.run(lambda model: None)
    clock.now += 50
    assert not manager.check_idle()


def test_no_timeout_never_unloads():
    clock = FakeClock()
    manager = ModelLifecycleManager(RecordingLoader(), idle_timeout_s=None, clock=clock)
    manager.load("small")
    clock.now += 10 ** 6
    assert not manager.check_idle()
    assert manager.status().status is ModelStatus.READY


def test_zero_timeout_unloads_after_each_run():
    loader = RecordingLoader()
    manager = ModelLifecycleManager(loader, idle_timeout_s=0)
    manager.load("small")

    manager.run(lambda model: None)
    assert manager.status().status is ModelStatus.UNLOADED
    manager.run(lambda model: None)
    assert loader.calls == ["small", "small"]


def test_unload_then_run_reloads_requested_model():
    loader = RecordingLoader()
    manager = ModelLifecycleManager(loader)
    manager.load("A")
    manager.switch("B")
    manager.unload()
    assert manager.run(lambda model: model.model_id) == "B"


def test_shutdown_unloads():
    manager = ModelLifecycleManager(RecordingLoader(), idle_timeout_s=60)
    manager.load("small")
    manager.start_idle_watcher(interval_s=0.01)
    manager.shutdown()
    assert manager.status().status is ModelStatus.UNLOADED


def test_run_with_model_id_switches_and_remembers_it():
    loader = RecordingLoader()
    manager = ModelLifecycleManager(loader)
    assert manager.run(lambda model: model.model_id, model_id="small") == "small"
    manager.load("small")
    assert manager.run(lambda model: model.model_id, model_id="medium") == "medium"

    assert loader.calls == ["small", "medium"]
    assert manager.desired_model_id == "medium"
    assert manager.run(lambda model: model.model_id) == "medium"
