"""
Orchestrator adapter (Kubernetes CoreV1 API).

Pod logs arrive as a plain chunked HTTP body, so every source opened here is
UNFRAMED. Configuration comes from kubeconfig (optionally a named context),
falling back to the in-cluster service account.
"""

from __future__ import annotations

import logging
import socket
from typing import Iterable, Iterator, List, Optional

import urllib3
from kubernetes import client as kube_client
from kubernetes import config as kube_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.stream import stream as kube_stream

from common.errors import TransportError
from logparse.reassembly import Framing
from sources.base import LogSource, iterate_in_thread

logger = logging.getLogger(__name__)

BACKEND = "kubernetes"

_TRANSPORT_ERRORS = (ApiException, urllib3.exceptions.HTTPError)


def _describe(e: Exception) -> str:
    if isinstance(e, ApiException):
        return f"{e.status} {e.reason}".strip()
    return str(e)


def load_core_api(context: Optional[str] = None):
    try:
        kube_config.load_kube_config(context=context)
    except ConfigException as e:
        if context:
            raise TransportError(BACKEND, f"cannot load kubeconfig context {context!r}: {e}") from e
        try:
            kube_config.load_incluster_config()
        except ConfigException as incluster_error:
            raise TransportError(
                BACKEND, f"no kubeconfig and not running in a cluster: {e}"
            ) from incluster_error
    return kube_client.CoreV1Api()


class KubeBackend:
    def __init__(self, core_api=None, *, context: Optional[str] = None) -> None:
        self._core_api = core_api
        self._context = context

    @property
    def core_api(self):
        if self._core_api is None:
            self._core_api = load_core_api(self._context)
        return self._core_api

    def list_namespaces(self) -> List[str]:
        try:
            result = self.core_api.list_namespace()
        except _TRANSPORT_ERRORS as e:
            raise TransportError(BACKEND, f"cannot list namespaces: {_describe(e)}") from e
        return [item.metadata.name for item in result.items]

    def list_pods(self, namespace: str) -> List[str]:
        try:
            result = self.core_api.list_namespaced_pod(namespace)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(
                BACKEND, f"cannot list pods in {namespace}: {_describe(e)}"
            ) from e
        return [item.metadata.name for item in result.items]

    def list_containers(self, namespace: str, pod: str) -> List[str]:
        try:
            result = self.core_api.read_namespaced_pod(pod, namespace)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(BACKEND, f"cannot read pod {namespace}/{pod}: {_describe(e)}") from e
        return [c.name for c in (result.spec.containers or [])]

    def open_logs(
        self,
        namespace: str,
        pod: str,
        *,
        container: Optional[str] = None,
        since_hours: int,
        follow: bool,
    ) -> LogSource:
        target = f"{namespace}/{pod}" + (f"/{container}" if container else "")
        logger.debug("Opening pod logs (target=%s follow=%s since=%dh)", target, follow, since_hours)
        try:
            response = self.core_api.read_namespaced_pod_log(
                name=pod,
                namespace=namespace,
                container=container,
                follow=follow,
                since_seconds=since_hours * 60 * 60,
                _preload_content=False,
            )
        except _TRANSPORT_ERRORS as e:
            raise TransportError(BACKEND, f"cannot open log stream for {target}: {_describe(e)}") from e

        return LogSource(
            backend=BACKEND,
            target=target,
            framing=Framing.UNFRAMED,
            chunks=iterate_in_thread(
                _stream_body(response), close=lambda: _close_response(response)
            ),
        )

    def exec_env(self, namespace: str, pod: str, *, container: Optional[str] = None) -> str:
        try:
            return kube_stream(
                self.core_api.connect_get_namespaced_pod_exec,
                pod,
                namespace,
                container=container,
                command=["env"],
                stderr=False,
                stdin=False,
                stdout=True,
                tty=False,
            )
        except _TRANSPORT_ERRORS as e:
            raise TransportError(BACKEND, f"exec in {namespace}/{pod} failed: {_describe(e)}") from e


def _stream_body(response) -> Iterator[bytes]:
    """Yield the HTTP body as it arrives and release the connection afterwards."""
    chunks: Iterable[bytes] = response.stream(decode_content=True)
    try:
        yield from chunks
    except _TRANSPORT_ERRORS as e:
        raise TransportError(BACKEND, f"log stream failed: {_describe(e)}") from e
    finally:
        response.release_conn()


def _close_response(response) -> None:
    """Abort a streaming response, waking a reader blocked on the socket."""
    connection = getattr(response, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Pod log socket already closed: %s", e)
    response.close()
