from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

import requests

from wds.config.models import CameraConfig
from wds.errors import FetchError, FrameTooSmall, NoReachableEndpoint
from wds.io.ingest.base import FrameSource
from wds.types import Frame

SNAPSHOT_PATHS = ("shot.jpg", "snapshot.jpg", "image.jpg", "capture.jpg")


def candidate_urls(base_url: str) -> list[str]:
    """Snapshot endpoints in priority order, ending with the base URL itself."""
    base = base_url.rstrip("/")
    return [f"{base}/{path}" for path in SNAPSHOT_PATHS] + [base]


class HttpSnapshotSource(FrameSource):
    """Pulls JPEG/PNG stills from IP cameras that expose a snapshot endpoint."""

    def __init__(
        self,
        config: CameraConfig,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "User-Agent": config.user_agent,
                "Accept": "image/jpeg, image/png, image/*",
            }
        )
        self._logger = logging.getLogger("wds.ingest.http")
        self._lock = threading.Lock()
        self._frame_id = 0

    def fetch_frame(self, base_url: str) -> Frame:
        failures: list[str] = []
        for url in candidate_urls(base_url):
            try:
                response = self._session.get(url, timeout=self._config.fetch_timeout_seconds)
            except requests.Timeout:
                self._logger.info("snapshot timeout url=%s", url)
                failures.append(f"{url}: timeout")
                continue
            except requests.RequestException as exc:
                self._logger.info("snapshot failed url=%s error=%s", url, exc)
                failures.append(f"{url}: {exc}")
                continue

            body = response.content or b""
            if response.status_code != 200:
                self._logger.debug("snapshot rejected url=%s status=%d", url, response.status_code)
                failures.append(f"{url}: HTTP {response.status_code}")
                continue
            if not body:
                self._logger.debug("snapshot rejected url=%s reason=empty-body", url)
                failures.append(f"{url}: empty body")
                continue

            if len(body) < self._config.min_frame_bytes:
                raise FrameTooSmall(
                    f"Frame from {url} is {len(body)} bytes "
                    f"(minimum {self._config.min_frame_bytes})"
                )

            with self._lock:
                self._frame_id += 1
                frame_id = self._frame_id
            self._logger.debug("snapshot ok url=%s bytes=%d frame=%d", url, len(body), frame_id)
            return Frame(
                data=body,
                source=url,
                timestamp=datetime.now(timezone.utc),
                frame_id=frame_id,
            )

        raise NoReachableEndpoint(
            "Could not get an image from any camera endpoint: " + "; ".join(failures)
        )

    def probe(self, base_url: str) -> None:
        url = base_url.rstrip("/")
        try:
            response = self._session.get(url, timeout=self._config.probe_timeout_seconds)
        except requests.RequestException as exc:
            raise FetchError(f"Camera connection failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise FetchError(f"Camera connection failed: HTTP {response.status_code} from {url}")
        self._logger.info("camera probe ok url=%s bytes=%d", url, len(response.content or b""))

    def close(self) -> None:
        self._session.close()

    def name(self) -> str:
        return "http-snapshot"
