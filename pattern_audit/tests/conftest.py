import pytest


@pytest.fixture
def anyio_backend():
    # The controller schedules effects with asyncio tasks directly.
    return "asyncio"
