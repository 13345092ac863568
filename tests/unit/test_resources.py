"""
Unit tests for resource caching in retrieval.resources module.

Tests the singleton caching behavior of:
    - get_store()
    - get_embedder()
    - get_retriever() / get_pipeline()
    - initialize_resources()
    - clear_resource_cache()
"""

import pytest

from kbsearch.config import settings
from kbsearch.ingestion.pipeline import IngestionPipeline
from kbsearch.retrieval.embeddings import OpenAIEmbedder
from kbsearch.retrieval.hybrid import HybridRetriever
from kbsearch.retrieval.resources import (
    clear_resource_cache,
    get_embedder,
    get_pipeline,
    get_retriever,
    get_store,
    initialize_resources,
)
from kbsearch.store.memory import InMemoryStore


@pytest.fixture(autouse=True)
def fresh_resources(monkeypatch, tmp_path):
    """Reset caches and run without a database or API key."""
    monkeypatch.setattr(settings, "database_url", None)
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "storage_dir", tmp_path)
    clear_resource_cache()
    yield
    clear_resource_cache()


@pytest.mark.unit
class TestResourceCaching:
    """Test that resource getters implement proper caching."""

    def test_get_store_caches_result(self):
        store1 = get_store()
        store2 = get_store()

        assert store1 is store2
        assert isinstance(store1, InMemoryStore)

    def test_get_embedder_none_without_key(self):
        assert get_embedder() is None

    def test_get_embedder_with_key(self, monkeypatch):
        from pydantic import SecretStr

        monkeypatch.setattr(settings, "openai_api_key", SecretStr("sk-test"))

        embedder = get_embedder()

        assert isinstance(embedder, OpenAIEmbedder)
        assert embedder is get_embedder()
        assert embedder.api_key == "sk-test"

    def test_retriever_and_pipeline_share_store(self):
        retriever = get_retriever()
        pipeline = get_pipeline()

        assert isinstance(retriever, HybridRetriever)
        assert isinstance(pipeline, IngestionPipeline)
        assert retriever.store is pipeline.store is get_store()
        assert retriever.embedder is None

    def test_clear_resource_cache(self):
        store1 = get_store()

        clear_resource_cache()

        assert get_store() is not store1


@pytest.mark.unit
class TestInitializeResources:
    """Tests for initialize_resources()."""

    def test_status_without_database_or_key(self):
        assert initialize_resources() == {
            "store": True,
            "persistent": False,
            "embedder": False,
        }

    def test_store_failure_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "database_url", "not-a-database-url")

        with pytest.raises(RuntimeError, match="Failed to initialize document store"):
            initialize_resources()
