from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable

import cv2
import requests

from wds.config.models import ModelConfig
from wds.detector.backends.base import DetectorBackend
from wds.detector.errors import ModelLoadError
from wds.detector.models.model_spec import ModelSpec
from wds.detector.selector import select_backend
from wds.errors import WdsError
from wds.types import ModelState

_CHUNK_SIZE = 1 << 16


class ModelResource:
    """Model artifact that can be fetched and loaded in the background.

    State moves NOT_REQUESTED -> DOWNLOADING -> LOADING -> READY, or to FAILED
    from any step. The download is attempted at most once per resource.
    """

    def __init__(
        self,
        config: ModelConfig,
        session: requests.Session | None = None,
        loader: Callable[[ModelSpec], DetectorBackend] | None = None,
    ) -> None:
        self._config = config
        self._spec = ModelSpec.from_config(config)
        self._session = session
        self._loader = loader or self._default_loader
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._state = ModelState.NOT_REQUESTED
        self._error: str | None = None
        self._backend: DetectorBackend | None = None
        self._worker: threading.Thread | None = None
        self._logger = logging.getLogger("wds.detector.model")

    @property
    def spec(self) -> ModelSpec:
        return self._spec

    @property
    def model_path(self) -> Path | None:
        return Path(self._spec.model_path) if self._spec.model_path else None

    def state(self) -> ModelState:
        with self._lock:
            return self._state

    def error(self) -> str | None:
        with self._lock:
            return self._error

    def backend(self) -> DetectorBackend | None:
        with self._lock:
            return self._backend if self._state == ModelState.READY else None

    def _set_state(self, state: ModelState, error: str | None = None) -> None:
        with self._lock:
            self._state = state
            self._error = error
        if error:
            self._logger.warning("Model state=%s error=%s", state.value, error)
        else:
            self._logger.info("Model state=%s", state.value)

    def _default_loader(self, spec: ModelSpec) -> DetectorBackend:
        selection = select_backend(spec, self._config.device)
        self._logger.info(
            "Model backend=%s device=%s reason=%s",
            selection.backend.name(),
            selection.backend.device_info(),
            selection.reason,
        )
        return selection.backend

    def ensure_available(self, background: bool = True) -> ModelState:
        """Start loading (and if needed downloading) the model once.

        Returns the state observed right after the request was made.
        """
        with self._lock:
            if self._state != ModelState.NOT_REQUESTED:
                return self._state
            path = self.model_path
            if path is None:
                self._state = ModelState.FAILED
                self._error = "No model path configured"
                return self._state
            needs_download = not path.exists()
            if needs_download and not self._config.auto_download:
                self._state = ModelState.FAILED
                self._error = f"Model file missing and auto download disabled: {path}"
                return self._state
            self._state = ModelState.DOWNLOADING if needs_download else ModelState.LOADING

        if not background:
            self._acquire(needs_download, delay=False)
            return self.state()

        self._worker = threading.Thread(
            target=self._acquire,
            args=(needs_download, True),
            name="wds-model-loader",
            daemon=True,
        )
        self._worker.start()
        return self.state()

    def _acquire(self, needs_download: bool, delay: bool) -> None:
        try:
            if needs_download:
                if delay and self._cancel.wait(self._config.download_delay_seconds):
                    self._set_state(ModelState.FAILED, "Model download cancelled")
                    return
                self.download()
            self._load()
        except (requests.RequestException, OSError, WdsError, cv2.error) as exc:
            self._set_state(ModelState.FAILED, str(exc))
        except Exception as exc:
            self._logger.exception("Unexpected error while acquiring model")
            self._set_state(ModelState.FAILED, f"{type(exc).__name__}: {exc}")

    def _load(self) -> None:
        self._set_state(ModelState.LOADING)
        backend = self._loader(self._spec)
        try:
            backend.warmup()
        except cv2.error as exc:
            raise ModelLoadError(f"Model warmup failed: {exc}") from exc
        with self._lock:
            self._backend = backend
        self._set_state(ModelState.READY)

    def download(self) -> Path:
        """Stream the artifact to a temporary file and move it into place."""
        path = self.model_path
        if path is None:
            raise ModelLoadError("No model path configured")
        url = self._config.download_url
        if not url:
            raise ModelLoadError("No model download URL configured")

        self._set_state(ModelState.DOWNLOADING)
        path.parent.mkdir(parents=True, exist_ok=True)
        session = self._session or requests.Session()
        self._logger.info("Downloading model url=%s dest=%s", url, path)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        written = 0
        try:
            with os.fdopen(fd, "wb") as handle:
                with session.get(
                    url,
                    stream=True,
                    timeout=self._config.download_timeout_seconds,
                ) as response:
                    response.raise_for_status()
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        if self._cancel.is_set():
                            raise ModelLoadError("Model download cancelled")
                        if chunk:
                            handle.write(chunk)
                            written += len(chunk)
            if written == 0:
                raise ModelLoadError(f"Model download from {url} returned an empty body")
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        finally:
            if self._session is None:
                session.close()

        self._logger.info("Model downloaded bytes=%d dest=%s", written, path)
        return path

    def fetch(self) -> DetectorBackend:
        """Synchronously download if missing, then load; raises on failure."""
        path = self.model_path
        if path is not None and not path.exists():
            self.download()
        try:
            self._load()
        except (WdsError, cv2.error) as exc:
            self._set_state(ModelState.FAILED, str(exc))
            raise
        backend = self.backend()
        if backend is None:
            raise ModelLoadError(f"Model did not become ready: {self.error() or self.state().value}")
        return backend

    def close(self, timeout: float | None = 1.0) -> None:
        self._cancel.set()
        worker = self._worker
        if worker is not None and worker.is_alive():
            worker.join(timeout=timeout)
