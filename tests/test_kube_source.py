"""Tests for sources/kube_source.py using a fake CoreV1Api."""

from __future__ import annotations

import asyncio
import socket
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import ProtocolError

# The application code lives under ./app; add it to sys.path for tests.
REPO_ROOT = Path(__file__).resolve().parents[1]
APP_ROOT = REPO_ROOT / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

import sources.kube_source as kube_source  # noqa: E402
from common.errors import TransportError  # noqa: E402
from logparse.reassembly import Framing  # noqa: E402
from sources.kube_source import KubeBackend  # noqa: E402


def _named(*names):
    return SimpleNamespace(items=[SimpleNamespace(metadata=SimpleNamespace(name=n)) for n in names])


class FakeResponse:
    def __init__(self, chunks):
        self.chunks = chunks
        self.released = False
        self.closed = False
        self.connection = None

    def stream(self, decode_content=True):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def release_conn(self):
        self.released = True

    def close(self):
        self.closed = True


class FakeSocket:
    def __init__(self, error=None):
        self.error = error
        self.shutdowns = []

    def shutdown(self, how):
        self.shutdowns.append(how)
        if self.error is not None:
            raise self.error


class FakeCoreApi:
    def __init__(self):
        self.namespaces = ["default", "prod"]
        self.pods = {"prod": ["api-1", "web-1"]}
        self.containers = {"api-1": ["api", "sidecar"], "web-1": ["web"]}
        self.response = FakeResponse([b"hello\n"])
        self.log_kwargs = None
        self.error = None

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    def list_namespace(self):
        self._maybe_fail()
        return _named(*self.namespaces)

    def list_namespaced_pod(self, namespace):
        self._maybe_fail()
        return _named(*self.pods.get(namespace, []))

    def read_namespaced_pod(self, name, namespace):
        self._maybe_fail()
        containers = [SimpleNamespace(name=c) for c in self.containers[name]]
        return SimpleNamespace(spec=SimpleNamespace(containers=containers))

    def read_namespaced_pod_log(self, **kwargs):
        self._maybe_fail()
        self.log_kwargs = kwargs
        return self.response

    def connect_get_namespaced_pod_exec(self, *args, **kwargs):
        raise AssertionError("called through kubernetes.stream only")


def _drain(source):
    async def _run():
        return [chunk async for chunk in source.chunks]

    return asyncio.run(_run())


class TestListing:
    def test_namespaces_pods_and_containers(self):
        backend = KubeBackend(FakeCoreApi())
        assert backend.list_namespaces() == ["default", "prod"]
        assert backend.list_pods("prod") == ["api-1", "web-1"]
        assert backend.list_containers("prod", "api-1") == ["api", "sidecar"]

    def test_api_error_is_wrapped(self):
        api = FakeCoreApi()
        api.error = ApiException(status=403, reason="Forbidden")
        with pytest.raises(TransportError) as exc:
            KubeBackend(api).list_pods("prod")
        assert exc.value.backend == "kubernetes"
        assert "403 Forbidden" in str(exc.value)


class TestOpenLogs:
    def test_stream_is_unframed_and_uses_lookback(self):
        api = FakeCoreApi()
        api.response = FakeResponse([b"one\ntw", b"o\n"])
        source = KubeBackend(api).open_logs(
            "prod", "web-1", container="web", since_hours=3, follow=True
        )

        assert source.framing is Framing.UNFRAMED
        assert source.target == "prod/web-1/web"
        assert _drain(source) == [b"one\ntw", b"o\n"]
        assert api.response.released
        assert api.log_kwargs == {
            "name": "web-1",
            "namespace": "prod",
            "container": "web",
            "follow": True,
            "since_seconds": 3 * 3600,
            "_preload_content": False,
        }

    def test_target_without_container(self):
        source = KubeBackend(FakeCoreApi()).open_logs(
            "prod", "web-1", since_hours=1, follow=False
        )
        assert source.target == "prod/web-1"

    def test_open_failure(self):
        api = FakeCoreApi()
        api.error = ApiException(status=404, reason="Not Found")
        with pytest.raises(TransportError, match="cannot open log stream"):
            KubeBackend(api).open_logs("prod", "gone", since_hours=1, follow=False)

    def test_broken_connection_mid_stream(self):
        api = FakeCoreApi()
        api.response = FakeResponse([b"partial", ProtocolError("Connection broken")])
        source = KubeBackend(api).open_logs("prod", "web-1", since_hours=1, follow=True)
        with pytest.raises(TransportError, match="log stream failed"):
            _drain(source)
        assert api.response.released
        assert api.response.closed

    def test_response_is_closed_after_draining(self):
        api = FakeCoreApi()
        source = KubeBackend(api).open_logs("prod", "web-1", since_hours=1, follow=False)
        assert _drain(source) == [b"hello\n"]
        assert api.response.closed


class TestCloseResponse:
    def test_socket_is_shut_down_before_close(self):
        response = FakeResponse([])
        sock = FakeSocket()
        response.connection = SimpleNamespace(sock=sock)

        kube_source._close_response(response)

        assert sock.shutdowns == [socket.SHUT_RDWR]
        assert response.closed

    def test_already_closed_socket_is_ignored(self):
        response = FakeResponse([])
        response.connection = SimpleNamespace(sock=FakeSocket(OSError(107, "not connected")))

        kube_source._close_response(response)

        assert response.closed

    def test_response_without_connection(self):
        response = FakeResponse([])
        kube_source._close_response(response)
        assert response.closed


class TestExecEnv:
    def test_runs_env_through_exec_stream(self, monkeypatch):
        calls = []

        def fake_stream(func, *args, **kwargs):
            calls.append((func, args, kwargs))
            return "A=1\nB=2\n"

        monkeypatch.setattr(kube_source, "kube_stream", fake_stream)
        api = FakeCoreApi()
        output = KubeBackend(api).exec_env("prod", "api-1", container="api")

        assert output == "A=1\nB=2\n"
        ((func, args, kwargs),) = calls
        assert func == api.connect_get_namespaced_pod_exec
        assert args == ("api-1", "prod")
        assert kwargs["command"] == ["env"]
        assert kwargs["container"] == "api"
        assert kwargs["stdout"] is True
        assert kwargs["tty"] is False

    def test_exec_failure(self, monkeypatch):
        def fake_stream(func, *args, **kwargs):
            raise ApiException(status=500, reason="Internal Server Error")

        monkeypatch.setattr(kube_source, "kube_stream", fake_stream)
        with pytest.raises(TransportError, match="exec in prod/api-1 failed"):
            KubeBackend(FakeCoreApi()).exec_env("prod", "api-1")


class TestLoadCoreApi:
    def test_falls_back_to_in_cluster_config(self, monkeypatch):
        loaded = []

        def no_kubeconfig(context=None):
            raise ConfigException("Invalid kube-config file. No configuration found.")

        monkeypatch.setattr(kube_source.kube_config, "load_kube_config", no_kubeconfig)
        monkeypatch.setattr(
            kube_source.kube_config, "load_incluster_config", lambda: loaded.append(True)
        )
        monkeypatch.setattr(kube_source.kube_client, "CoreV1Api", lambda: "core-api")

        assert kube_source.load_core_api() == "core-api"
        assert loaded == [True]

    def test_named_context_does_not_fall_back(self, monkeypatch):
        def bad_context(context=None):
            raise ConfigException(f"Expected key {context} in contexts")

        monkeypatch.setattr(kube_source.kube_config, "load_kube_config", bad_context)
        with pytest.raises(TransportError, match="context 'staging'"):
            kube_source.load_core_api("staging")

    def test_nothing_available(self, monkeypatch):
        def missing(*args, **kwargs):
            raise ConfigException("Service host/port is not set.")

        monkeypatch.setattr(kube_source.kube_config, "load_kube_config", missing)
        monkeypatch.setattr(kube_source.kube_config, "load_incluster_config", missing)
        with pytest.raises(TransportError, match="not running in a cluster"):
            kube_source.load_core_api()
