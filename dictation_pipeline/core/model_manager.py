"""
Lifecycle management for the transcription model.
Serialises load, switch, unload and inference, and unloads the model
after a configurable idle period.
"""

import logging
import threading
import time
import typing as t

from dictation_pipeline.exceptions import ModelLoadError
from dictation_pipeline.models.model_state import (
    LifecycleEvent, ModelHandle, ModelStateEvent, ModelStatus,
)


class ModelLifecycleManager:
    """Owns the single loaded transcription model.

    ``loader(model_id)`` returns a model object or raises. Every operation
    that touches the model runs under one lock, so a switch requested
    during inference waits for the inference to finish. ``status()`` only
    reads a snapshot and never waits on that lock.
    """

    IDLE_CHECK_INTERVAL_S = 10

    def __init__(self, loader, idle_timeout_s: t.Optional[float] = None,
                 event_channel=None, clock=time.monotonic):
        self.logger = logging.getLogger(__name__)
        self.loader = loader
        self.idle_timeout_s = idle_timeout_s
        self.event_channel = event_channel
        self.clock = clock

        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._model = None
        self._handle = ModelHandle(model_id=None, status=ModelStatus.UNLOADED)
        self._desired_model_id: t.Optional[str] = None
        self._last_activity = clock()

        self._watcher_thread = None
        self._watcher_stop = threading.Event()

    # -- state ---------------------------------------------------------------

    def status(self) -> ModelHandle:
        with self._state_lock:
            return self._handle

    @property
    def desired_model_id(self):
        with self._state_lock:
            return self._desired_model_id

    def _set_handle(self, handle):
        with self._state_lock:
            self._handle = handle

    def _publish(self, kind, model_id=None, error=None):
        if self.event_channel is not None:
            self.event_channel.publish(ModelStateEvent(kind=kind, model_id=model_id, error=error))

    def set_idle_timeout(self, idle_timeout_s):
        self.idle_timeout_s = idle_timeout_s

    # -- exclusive operations ------------------------------------------------

    def load(self, model_id):
        """Load ``model_id``, replacing whatever is loaded. No-op if already ready."""
        with self._lock:
            self._load_locked(model_id)

    def switch(self, model_id):
        """Replace the loaded model. Waits for any in-flight inference."""
        with self._lock:
            if self._handle.model_id != model_id or self._handle.status is not ModelStatus.READY:
                self.logger.info(f"Switching model {self._handle.model_id} -> {model_id}")
            self._load_locked(model_id)

    def unload(self):
        with self._lock:
            self._unload_locked()

    def run(self, fn, model_id=None):
        """Call ``fn(model)`` with the loaded model while holding the lock.

        ``model_id`` selects the model for this call, switching if another
        one is loaded. Without it the last requested model is used, and
        reloaded first if it was unloaded.
        """
        with self._lock:
            if model_id is None:
                model_id = self._desired_model_id
            if model_id is None:
                raise ModelLoadError("<none>", "No model selected")
            if self._handle.status is not ModelStatus.READY or self._handle.model_id != model_id:
                if self._handle.status is ModelStatus.READY:
                    self.logger.info(f"Switching model {self._handle.model_id} -> {model_id}")
                self._load_locked(model_id)
            try:
                return fn(self._model)
            finally:
                self._last_activity = self.clock()
                if self.idle_timeout_s == 0:
                    self.logger.info("Unloading model immediately after transcription")
                    self._unload_locked()

    def _load_locked(self, model_id):
        with self._state_lock:
            self._desired_model_id = model_id
        if self._handle.status is ModelStatus.READY and self._handle.model_id == model_id:
            return

        if self._model is not None:
            self._unload_locked()

        self.logger.info(f"Loading model {model_id}")
        self._set_handle(ModelHandle(model_id=model_id, status=ModelStatus.LOADING))
        self._publish(LifecycleEvent.LOADING_STARTED, model_id=model_id)
        try:
            model = self.loader(model_id)
        except Exception as e:
            self.logger.error(f"Failed to load model {model_id}: {e}")
            self._set_handle(ModelHandle(model_id=model_id, status=ModelStatus.ERROR, error=str(e)))
            self._publish(LifecycleEvent.LOADING_FAILED, model_id=model_id, error=str(e))
            raise ModelLoadError(model_id, str(e)) from e

        self._model = model
        self._last_activity = self.clock()
        self._set_handle(ModelHandle(model_id=model_id, status=ModelStatus.READY, loaded_at=time.time()))
        self._publish(LifecycleEvent.LOADED, model_id=model_id)
        self.logger.info(f"Model {model_id} ready")

    def _unload_locked(self):
        if self._model is None and self._handle.status is not ModelStatus.READY:
            return
        model_id = self._handle.model_id
        self._model = None
        self._set_handle(ModelHandle(model_id=model_id, status=ModelStatus.UNLOADED))
        self._publish(LifecycleEvent.UNLOADED, model_id=model_id)
        self.logger.info(f"Model {model_id} unloaded")

    # -- idle handling -------------------------------------------------------

    def check_idle(self) -> bool:
        """Unload the model if it has been idle past the timeout.

        Skips the check when another operation holds the lock.
        Returns True if the model was unloaded.
        """
        timeout = self.idle_timeout_s
        if not timeout:
            return False
        if not self._lock.acquire(blocking=False):
            return False
        try:
            if self._handle.status is not ModelStatus.READY:
                return False
            idle_for = self.clock() - self._last_activity
            if idle_for < timeout:
                return False
            self.logger.info(f"Model idle for {idle_for:.0f}s, unloading")
            self._unload_locked()
            return True
        finally:
            self._lock.release()

    def start_idle_watcher(self, interval_s=None):
        if self._watcher_thread and self._watcher_thread.is_alive():
            return
        interval_s = interval_s or self.IDLE_CHECK_INTERVAL_S
        self._watcher_stop.clear()

        def watch():
            while not self._watcher_stop.wait(interval_s):
                try:
                    self.check_idle()
                except Exception as e:
                    self.logger.error(f"Idle check failed: {e}")

        self._watcher_thread = threading.Thread(target=watch, name="model-idle-watcher", daemon=True)
        self._watcher_thread.start()

    def shutdown(self):
        self._watcher_stop.set()
        if self._watcher_thread:
            self._watcher_thread.join(timeout=2.0)
            self._watcher_thread = None
        self.unload()
