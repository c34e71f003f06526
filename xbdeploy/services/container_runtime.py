"""
xbdeploy.services.container_runtime: Docker-backed container control surface.

Primary method for every call is the Docker SDK. Interactive sessions (init,
reset-admin, shell) need a real TTY, so they go through the docker CLI first
and fall back to a streamed SDK exec when the CLI is missing.
"""

import logging
import shutil
import subprocess

import click
import docker
from docker.errors import DockerException, NotFound

from xbdeploy.state import ExecResult

log = logging.getLogger("xbdeploy")


class DockerRuntime:
    """Narrow container capability interface used by the lifecycle services."""

    def __init__(self, client=None, docker_cli="docker"):
        self._client = client
        self.docker_cli = docker_cli

    # ── Client ────────────────────────────────────────────────────────────────

    def client(self):
        """Return a cached Docker SDK client, creating it on first use."""
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def available(self):
        """Return True when the Docker daemon answers a ping."""
        try:
            return bool(self.client().ping())
        except DockerException as exc:
            log.warning(f"Docker daemon unreachable: {exc}")
            return False

    def _get(self, name):
        try:
            return self.client().containers.get(name)
        except NotFound:
            return None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def exists(self, name):
        return self._get(name) is not None

    def is_running(self, name):
        container = self._get(name)
        if container is None:
            return False
        return container.status == "running"

    def run(self, name, image, *, command, ports, volumes, restart_policy="unless-stopped"):
        """Create and start a detached container with bind mounts and port map."""
        container = self.client().containers.run(
            image=image,
            command=command,
            name=name,
            ports=ports,
            volumes=volumes,
            restart_policy={"Name": restart_policy},
            detach=True,
        )
        log.info(f"Container {name!r} started  id={container.short_id}")
        return container

    def start(self, name):
        container = self._get(name)
        if container is None:
            return False
        container.start()
        return True

    def stop(self, name, timeout=10):
        container = self._get(name)
        if container is None:
            return False
        container.stop(timeout=timeout)
        return True

    def restart(self, name, timeout=10):
        container = self._get(name)
        if container is None:
            return False
        container.restart(timeout=timeout)
        return True

    def remove(self, name):
        """Force-remove a container; bind-mounted data volumes are untouched."""
        container = self._get(name)
        if container is None:
            return False
        container.remove(force=True, v=False)
        return True

    # ── Exec ──────────────────────────────────────────────────────────────────

    def exec(self, name, cmd, *, user=None, detach=False):
        """Run a command inside the container and capture its combined output."""
        try:
            container = self._get(name)
            if container is None:
                return ExecResult(None, f"container {name} not found")
            kwargs = {"detach": detach}
            if user:
                kwargs["user"] = user
            result = container.exec_run(cmd, **kwargs)
        except DockerException as exc:
            return ExecResult(None, str(exc))
        output = result.output
        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        if detach:
            return ExecResult(0, output or "")
        return ExecResult(result.exit_code, output or "")

    def exec_interactive(self, name, cmd):
        """Run an interactive command attached to the operator's terminal.

        Output is shown to the operator only; it is never captured.
        """
        cli = shutil.which(self.docker_cli)
        if cli:
            completed = subprocess.run([cli, "exec", "-it", name] + list(cmd))
            return completed.returncode
        log.warning("docker CLI not found; falling back to non-TTY SDK exec")
        container = self._get(name)
        if container is None:
            return None
        exec_id = self.client().api.exec_create(container.id, cmd, tty=False, stdin=False)["Id"]
        for chunk in self.client().api.exec_start(exec_id, stream=True):
            click.echo(chunk.decode("utf-8", errors="replace"), nl=False)
        return self.client().api.exec_inspect(exec_id).get("ExitCode")

    # ── Introspection ─────────────────────────────────────────────────────────

    def list_processes(self, name):
        """Return the container process table as text, or None when unavailable."""
        container = self._get(name)
        if container is None:
            return None
        try:
            top = container.top(ps_args="aux")
        except DockerException:
            try:
                top = container.top()
            except DockerException:
                return None
        titles = top.get("Titles") or []
        rows = [" ".join(titles)]
        for proc in top.get("Processes") or []:
            rows.append(" ".join(str(col) for col in proc))
        return "\n".join(rows)

    def logs(self, name, tail=200):
        """Return the last ``tail`` container log lines as text."""
        container = self._get(name)
        if container is None:
            return ""
        try:
            raw = container.logs(tail=tail)
        except DockerException as exc:
            return str(exc)
        return raw.decode("utf-8", errors="replace")

    def stream_logs(self, name, follow=True):
        """Stream container logs to stdout until interrupted."""
        container = self._get(name)
        if container is not None:
            try:
                for chunk in container.logs(stream=True, follow=follow):
                    click.echo(chunk.decode("utf-8", errors="replace"), nl=False)
                return 0
            except DockerException as exc:
                log.warning(f"SDK log stream failed, trying docker CLI: {exc}")
        cli = shutil.which(self.docker_cli)
        if not cli:
            return 1
        args = [cli, "logs"]
        if follow:
            args.append("-f")
        return subprocess.run(args + [name]).returncode

    def describe(self, name):
        """Return a compact status mapping for display, or None when absent."""
        container = self._get(name)
        if container is None:
            return None
        state = container.attrs.get("State", {})
        return {
            "name": container.name,
            "id": container.short_id,
            "status": container.status,
            "image": container.attrs.get("Config", {}).get("Image", ""),
            "started_at": state.get("StartedAt", ""),
            "ports": container.ports,
        }
