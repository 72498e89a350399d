import pytest

from relay.debug_logger import DebugLogger
from relay.llm.client import clear_client_cache


@pytest.fixture(autouse=True)
def reset_singletons():
    """Keep the debug logger disabled and the client cache empty between tests."""
    DebugLogger._instance = None
    clear_client_cache()
    yield
    instance = DebugLogger._instance
    if instance and instance.enabled:
        instance.close()
    DebugLogger._instance = None
    clear_client_cache()
