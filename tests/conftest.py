from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from costinsight.app import create_app
from costinsight.config import Settings
from costinsight.metrics import MetricsRegistry
from costinsight.providers.base import CostProvider


def make_provider(name: str) -> MagicMock:
    provider = MagicMock(spec=CostProvider)
    provider.name = name
    return provider


@pytest.fixture
def aws_provider():
    return make_provider("aws")


@pytest.fixture
def azure_provider():
    return make_provider("azure")


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
def client(aws_provider, azure_provider, metrics):
    app = create_app(
        settings=Settings(),
        providers={"aws": aws_provider, "azure": azure_provider},
        metrics=metrics,
    )
    return TestClient(app)
