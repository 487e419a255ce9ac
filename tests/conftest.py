from __future__ import annotations

import pytest

from conv_client.config import ClientConfig

from .fakes import FakeClient


@pytest.fixture
def small_config() -> ClientConfig:
    return ClientConfig(
        address="127.0.0.1",
        request_count=3,
        target_size=4,
        kernel_count=0,
        kernel_size=0,
        avg_pool_size=2,
        launch_delay_s=0.0,
        timeout_s=5.0,
    )


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()
