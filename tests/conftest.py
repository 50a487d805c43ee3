"""Shared pytest configuration and fixtures."""

import pytest

from lectern.core.embed import Embedder, EmbeddingConfig
from lectern.core.store import IndexStore

from fakes import FakeProvider, MemoryBackend


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


@pytest.fixture()
def embed_config() -> EmbeddingConfig:
    # No waiting between retries
    return EmbeddingConfig(
        model="fake",
        batch_size=4,
        max_attempts=3,
        retry_base_seconds=0,
        retry_max_seconds=0,
        max_concurrency=1,
        max_input_chars=5000,
        request_timeout=5,
    )


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def embedder(provider, embed_config) -> Embedder:
    return Embedder(provider, embed_config)


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def store(backend, embedder) -> IndexStore:
    return IndexStore(backend, embedder, atomic=False)
