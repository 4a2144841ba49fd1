from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Optional

from rich.console import Console
from rich.text import Text

from common.config import TailConfig
from common.logging_config import set_session_id
from common.telemetry import get_tracer
from logparse.pipeline import ConsoleSink, PipelineStats, run_pipeline
from logparse.reassembly import make_reassembler
from logparse.render import LogRenderer
from logtail.selection import choose_many, choose_one
from sources.base import LogSource
from sources.docker_source import DockerBackend
from sources.kube_source import KubeBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    """What to read from: `namespace` set selects the orchestrator backend."""

    container: Optional[str]
    namespace: Optional[str]


async def _choose_kube_container(kube: KubeBackend, namespace: str, pod: str) -> Optional[str]:
    containers = await asyncio.to_thread(kube.list_containers, namespace, pod)
    if len(containers) <= 1:
        return containers[0] if containers else None
    return await choose_one(containers, message=f"Container in {pod}:")


async def open_source(
    target: Target,
    cfg: TailConfig,
    *,
    follow: bool,
    docker_backend: Optional[DockerBackend] = None,
    kube_backend: Optional[KubeBackend] = None,
) -> LogSource:
    if target.namespace is None:
        docker_backend = docker_backend or DockerBackend()
        names = await asyncio.to_thread(docker_backend.list_container_names)
        name = await choose_one(names, target.container, message="Container:")
        return await asyncio.to_thread(
            docker_backend.open_logs, name, since_hours=cfg.since_hours, follow=follow
        )

    kube = kube_backend or KubeBackend(context=cfg.kube_context)
    namespaces = await asyncio.to_thread(kube.list_namespaces)
    namespace = await choose_one(namespaces, target.namespace, message="Namespace:")
    pods = await asyncio.to_thread(kube.list_pods, namespace)
    pod = await choose_one(pods, target.container, message="Pod:")
    container = await _choose_kube_container(kube, namespace, pod)
    return await asyncio.to_thread(
        kube.open_logs,
        namespace,
        pod,
        container=container,
        since_hours=cfg.since_hours,
        follow=follow,
    )


def build_renderer(cfg: TailConfig) -> LogRenderer:
    return LogRenderer(
        suppressed_levels=cfg.suppressed_levels,
        unrecognized_marker=cfg.unrecognized_marker,
        strict_timestamps=cfg.strict_timestamps,
    )


async def run_logs(
    target: Target,
    cfg: TailConfig,
    *,
    follow: bool,
    console: Console,
    docker_backend: Optional[DockerBackend] = None,
    kube_backend: Optional[KubeBackend] = None,
) -> PipelineStats:
    set_session_id(uuid.uuid4().hex)
    source = await open_source(
        target,
        cfg,
        follow=follow,
        docker_backend=docker_backend,
        kube_backend=kube_backend,
    )
    logger.info(
        "Tailing %s (backend=%s framing=%s)",
        source.target,
        source.backend,
        source.framing.value,
    )

    reassembler = make_reassembler(
        source.framing,
        max_frame_size=cfg.max_frame_size,
        max_pending_bytes=cfg.max_pending_bytes,
    )

    tracer = get_tracer("logtail")
    span_cm = (
        tracer.start_as_current_span("logtail.session") if tracer else nullcontext()
    )
    with span_cm as span:
        if span:
            span.set_attribute("app.backend", source.backend)
            span.set_attribute("app.target", source.target)
            span.set_attribute("app.framing", source.framing.value)
            span.set_attribute("app.follow", bool(follow))
            span.set_attribute("app.since_hours", int(cfg.since_hours))
        stats = await run_pipeline(
            source.chunks,
            reassembler=reassembler,
            renderer=build_renderer(cfg),
            sink=ConsoleSink(console),
        )
        if span:
            span.set_attribute("app.lines", stats.lines)
            span.set_attribute("app.lines_printed", stats.printed)
            span.set_attribute("app.lines_suppressed", stats.suppressed)
    return stats


async def run_env(
    target: Target,
    cfg: TailConfig,
    *,
    console: Console,
    docker_backend: Optional[DockerBackend] = None,
    kube_backend: Optional[KubeBackend] = None,
) -> int:
    """Print the environment of the selected container(s); returns how many."""
    set_session_id(uuid.uuid4().hex)
    if target.namespace is None:
        docker_backend = docker_backend or DockerBackend()
        names = await asyncio.to_thread(docker_backend.list_container_names)
        name = await choose_one(names, target.container, message="Container:")
        output = await asyncio.to_thread(docker_backend.exec_env, name)
        console.print(output.rstrip("\n"))
        return 1

    kube = kube_backend or KubeBackend(context=cfg.kube_context)
    namespaces = await asyncio.to_thread(kube.list_namespaces)
    namespace = await choose_one(namespaces, target.namespace, message="Namespace:")
    pods = await asyncio.to_thread(kube.list_pods, namespace)
    selected = await choose_many(pods, target.container, message="Pods:")

    for pod in selected:
        container = await _choose_kube_container(kube, namespace, pod)
        output = await asyncio.to_thread(
            kube.exec_env, namespace, pod, container=container
        )
        if len(selected) > 1:
            console.print(Text(f"# {namespace}/{pod}", style="bold"))
        console.print(output.rstrip("\n"))
    return len(selected)
