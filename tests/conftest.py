from pathlib import Path

import pytest
import pytest_asyncio

from fakes import FakeTello, make_config


@pytest_asyncio.fixture
async def fake_tello():
    device = FakeTello()
    await device.start()
    try:
        yield device
    finally:
        device.close()


@pytest.fixture
def config_factory(tmp_path: Path):
    def factory(command_port: int):
        return make_config(tmp_path, command_port)

    return factory
