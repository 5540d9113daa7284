"""Mock objects for wtenv testing."""

from tests.mocks.mock_containers import MockContainerManager
from tests.mocks.mock_prober import MockHealthProber
from tests.mocks.mock_runner import MockCommandRunner

__all__ = [
    "MockCommandRunner",
    "MockContainerManager",
    "MockHealthProber",
]
