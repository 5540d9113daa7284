"""Mock HealthProber returning scripted probe results."""

from __future__ import annotations

from dataclasses import dataclass

from wtenv.types import ProbeResult


@dataclass
class ProbeCall:
    """Record of one probe."""

    url: str
    container_name: str | None


class MockHealthProber:
    """Returns queued ProbeResults, then repeats the default.

    Example:
        prober = MockHealthProber()
        prober.queue(healthy=False, message="Connection refused")
    """

    def __init__(self, healthy: bool = True, message: str = "HTTP 200") -> None:
        self.calls: list[ProbeCall] = []
        self.default = ProbeResult(healthy=healthy, message=message, status_code=200 if healthy else None)
        self._queue: list[ProbeResult] = []

    def queue(self, healthy: bool, message: str, status_code: int | None = None) -> None:
        self._queue.append(ProbeResult(healthy=healthy, message=message, status_code=status_code))

    def set_default(self, healthy: bool, message: str, status_code: int | None = None) -> None:
        self.default = ProbeResult(healthy=healthy, message=message, status_code=status_code)

    async def probe(self, url: str, container_name: str | None = None) -> ProbeResult:
        self.calls.append(ProbeCall(url, container_name))
        if self._queue:
            return self._queue.pop(0)
        return self.default
