"""Single-shot HTTP health probes for worktree environments."""

from __future__ import annotations

import asyncio
import errno
import shlex
import socket
import urllib.error
import urllib.request

from wtenv.constants import DEFAULT_CONTAINER_RUNTIME, DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS
from wtenv.logging import get_logger
from wtenv.types import ProbeResult

logger = get_logger("health")

# curl exit codes we classify
CURL_COULDNT_CONNECT = 7
CURL_TIMEOUT = 28


class _NoRedirect(urllib.request.HTTPRedirectHandler):
    """Surface 3xx responses instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[no-untyped-def]
        return None


_opener = urllib.request.build_opener(_NoRedirect)


def classify_status(status_code: int, reason: str = "") -> ProbeResult:
    """2xx and 3xx are healthy, anything else is not."""
    if 200 <= status_code < 400:
        return ProbeResult(healthy=True, message=f"HTTP {status_code}", status_code=status_code)
    message = f"HTTP {status_code} {reason}".strip()
    return ProbeResult(healthy=False, message=message, status_code=status_code)


class HealthProber:
    """Issues one GET against a health URL and classifies the answer.

    Probes run either directly from the host, or through `<runtime> exec
    <container> curl` when the app is only reachable from inside its container.
    probe() never raises; every failure is reported as an unhealthy result.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS,
        runtime: str = DEFAULT_CONTAINER_RUNTIME,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.runtime = runtime

    async def probe(self, url: str, container_name: str | None = None) -> ProbeResult:
        """Probe a health URL once.

        Args:
            url: URL to GET
            container_name: Route the request through this container

        Returns:
            ProbeResult with health verdict and a short diagnostic
        """
        if container_name:
            result = await self._probe_in_container(url, container_name)
        else:
            result = await asyncio.to_thread(self._probe_host, url)
        logger.debug(f"Probe {url} -> {result.message}")
        return result

    def _timeout_message(self) -> str:
        return f"Timeout after {self.timeout_seconds:g}s"

    def _probe_host(self, url: str) -> ProbeResult:
        try:
            req = urllib.request.Request(url, method="GET")
            with _opener.open(req, timeout=self.timeout_seconds) as resp:
                return classify_status(resp.status, resp.reason or "")
        except urllib.error.HTTPError as e:
            return classify_status(e.code, str(e.reason or ""))
        except urllib.error.URLError as e:
            return self._classify_os_error(e.reason)
        except (TimeoutError, socket.timeout):
            return ProbeResult(healthy=False, message=self._timeout_message())
        except OSError as e:
            return self._classify_os_error(e)
        except ValueError as e:
            return ProbeResult(healthy=False, message=f"Invalid URL: {e}")

    def _classify_os_error(self, reason: object) -> ProbeResult:
        if isinstance(reason, TimeoutError | socket.timeout):
            return ProbeResult(healthy=False, message=self._timeout_message())
        if isinstance(reason, ConnectionRefusedError) or (
            isinstance(reason, OSError) and reason.errno == errno.ECONNREFUSED
        ):
            return ProbeResult(healthy=False, message="Connection refused")
        return ProbeResult(healthy=False, message=f"Request failed: {reason}")

    async def _probe_in_container(self, url: str, container_name: str) -> ProbeResult:
        timeout = self.timeout_seconds
        script = (
            f"curl -s -o /dev/null -w '%{{http_code}}' --max-time {timeout:g} {shlex.quote(url)}"
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                self.runtime,
                "exec",
                container_name,
                "sh",
                "-c",
                script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ProbeResult(healthy=False, message=f"Probe failed to launch: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout + 5)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return ProbeResult(healthy=False, message=self._timeout_message())

        if proc.returncode == CURL_TIMEOUT:
            return ProbeResult(healthy=False, message=self._timeout_message())
        if proc.returncode == CURL_COULDNT_CONNECT:
            return ProbeResult(healthy=False, message="Connection refused")

        code = stdout.decode(errors="replace").strip()
        if proc.returncode != 0 or not code.isdigit() or code == "000":
            detail = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
            return ProbeResult(healthy=False, message=f"Probe failed: {detail}")

        return classify_status(int(code))
