"""Shared fixtures for service and API tests."""

import pytest

from app.config import Settings
from tests.helpers import FakeLLM, scene_batches


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        local_mode=True,
        local_data_path=str(tmp_path),
        google_api_key="test-key",
    )


@pytest.fixture
def fake_llm(settings):
    return FakeLLM(settings, batches=scene_batches())
