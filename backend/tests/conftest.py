"""
pytest configuration and shared fixtures for the gateway tests.
No test here talks to a real provider.
"""
from typing import Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from gateway.schemas import (
    BodyModel3D,
    ClothingModel3D,
    ImagePayload,
    ProviderConfig,
    ProviderName,
    RateLimit,
    VideoPayload,
)

pytest_plugins = ('pytest_asyncio',)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "asyncio: marks tests as async")


def make_config(
    provider: ProviderName,
    priority: int,
    fallback: Optional[ProviderName] = None,
    rate_limit: Optional[RateLimit] = None,
    endpoint: str = "https://api.example.com/v1",
) -> ProviderConfig:
    return ProviderConfig(
        provider=provider,
        api_key=f"{provider.value}-test-key",
        endpoint=endpoint,
        priority=priority,
        fallback_provider=fallback,
        rate_limit=rate_limit,
    )


def triangle_body(provider: str) -> BodyModel3D:
    return BodyModel3D(
        id=f"{provider}_body_test",
        provider=provider,
        vertices=[0, 0, 0, 1, 0, 0, 0, 1, 0],
        faces=[0, 1, 2],
    )


def triangle_clothing(provider: str, category: str = "tops") -> ClothingModel3D:
    return ClothingModel3D(
        id=f"{provider}_clothing_test",
        provider=provider,
        category=category,
        vertices=[0, 0, 0, 1, 0, 0, 0, 1, 0],
        faces=[0, 1, 2],
    )


def mock_client(name: str, error: Optional[BaseException] = None) -> MagicMock:
    """Client double whose generate methods succeed, or raise ``error``."""
    client = MagicMock()
    client.name = name
    if error is None:
        client.generate_body_model = AsyncMock(return_value=triangle_body(name))
        client.generate_clothing_model = AsyncMock(return_value=triangle_clothing(name))
    else:
        client.generate_body_model = AsyncMock(side_effect=error)
        client.generate_clothing_model = AsyncMock(side_effect=error)
    client.health_check = AsyncMock(return_value=None)
    client.close = AsyncMock(return_value=None)
    return client


def factory_for(clients: Dict[str, MagicMock]):
    return lambda config: clients[config.name]


def mock_session(*responses) -> MagicMock:
    """httpx.AsyncClient double answering each request with the next response (or raising it)."""
    session = MagicMock()
    session.request = AsyncMock(side_effect=list(responses))
    session.aclose = AsyncMock(return_value=None)
    return session


def mock_response(status_code: int = 200, json_data=None, text: str = "", content: bytes = b"") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.content = content
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def image() -> ImagePayload:
    return ImagePayload(data=PNG_BYTES, mime_type="image/png", name="front.png")


@pytest.fixture
def video() -> VideoPayload:
    return VideoPayload(data=b"\x00\x00\x00\x18ftypmp42", mime_type="video/mp4", name="orbit.mp4")
