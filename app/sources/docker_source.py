"""
Local container runtime adapter (Docker Engine API via the Docker SDK).

Non-TTY containers deliver multiplexed stdout/stderr; the SDK strips the
8-byte frame headers and yields one payload per frame, so the source is
tagged FRAMED. TTY containers deliver a raw stream and are tagged UNFRAMED.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional

import docker
import requests
from docker.errors import DockerException, NotFound

from common.errors import TransportError
from logparse.reassembly import Framing
from sources.base import DEFAULT_COALESCE_BYTES, LogSource, iterate_in_thread

logger = logging.getLogger(__name__)

BACKEND = "docker"


def _guarded(frames: Iterable[bytes]) -> Iterator[bytes]:
    try:
        yield from frames
    except (DockerException, requests.exceptions.RequestException) as e:
        raise TransportError(BACKEND, f"log stream failed: {e}") from e


def _stream_closer(stream):
    """Cancel a `container.logs(stream=True)` result; shuts down its socket."""
    close = getattr(stream, "close", None)

    def _close() -> None:
        if close is None:
            return
        try:
            close()
        except DockerException as e:
            # Raised for ssh:// daemons, whose streams cannot be cancelled.
            logger.debug("Could not cancel docker log stream: %s", e)

    return _close


class DockerBackend:
    def __init__(self, client=None) -> None:
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise TransportError(BACKEND, f"cannot connect to the daemon: {e}") from e
        return self._client

    def _get_container(self, name: str):
        try:
            return self.client.containers.get(name)
        except NotFound as e:
            raise TransportError(BACKEND, f"no such container: {name}") from e
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportError(BACKEND, str(e)) from e

    def list_container_names(self) -> List[str]:
        """Names of the running containers, without the leading slash."""
        try:
            containers = self.client.containers.list()
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportError(BACKEND, f"cannot list containers: {e}") from e
        return [c.name.lstrip("/") for c in containers]

    def open_logs(
        self,
        name: str,
        *,
        since_hours: int,
        follow: bool,
        now: Optional[datetime] = None,
    ) -> LogSource:
        container = self._get_container(name)
        tty = bool((container.attrs.get("Config") or {}).get("Tty"))
        since = (now or datetime.now(timezone.utc)) - timedelta(hours=since_hours)

        logger.debug(
            "Opening docker logs (container=%s tty=%s follow=%s since=%s)",
            name,
            tty,
            follow,
            since.isoformat(),
        )
        try:
            frames = container.logs(
                stdout=True,
                stderr=True,
                stream=True,
                follow=follow,
                since=int(since.timestamp()),
            )
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportError(BACKEND, f"cannot open log stream: {e}") from e

        return LogSource(
            backend=BACKEND,
            target=name,
            framing=Framing.UNFRAMED if tty else Framing.FRAMED,
            chunks=iterate_in_thread(
                _guarded(frames),
                close=_stream_closer(frames),
                # TTY output is streamed one byte per chunk.
                coalesce_bytes=DEFAULT_COALESCE_BYTES if tty else 0,
            ),
        )

    def exec_env(self, name: str) -> str:
        container = self._get_container(name)
        try:
            result = container.exec_run(["env"], stdout=True, stderr=False)
        except (DockerException, requests.exceptions.RequestException) as e:
            raise TransportError(BACKEND, f"exec failed: {e}") from e
        if result.exit_code not in (0, None):
            raise TransportError(BACKEND, f"env exited with status {result.exit_code}")
        return (result.output or b"").decode("utf-8", errors="replace")
