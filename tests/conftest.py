import pytest

from venue_pipeline.clients import http_client as http_client_module


@pytest.fixture(autouse=True)
def reset_http_client():
    """Reset the shared client singleton between tests."""
    http_client_module.HttpClient._instance = None
    http_client_module.HttpClient._initialized = False
    yield
    http_client_module.HttpClient._instance = None
    http_client_module.HttpClient._initialized = False
