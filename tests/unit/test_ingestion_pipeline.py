"""Unit tests for ingestion.pipeline module."""

import fitz
import numpy as np
import pytest

from kbsearch.exceptions import DocumentNotFoundError, UnsupportedFileError
from kbsearch.ingestion.extraction import (
    DOCX_MIME_TYPE,
    PDF_MIME_TYPE,
    SCANNED_PDF_WARNING,
    DelegatingExtractor,
)
from kbsearch.ingestion.pipeline import IngestionPipeline
from kbsearch.models import DocumentStatus, ExtractionResult, MatchType
from kbsearch.retrieval.hybrid import HybridRetriever

REFUND_TEXT = (
    "Customers may request a refund within 30 days of purchase. "
    "Refund requests are reviewed by the billing team within five business days."
)


def _paragraphs(count: int) -> bytes:
    return "\n\n".join(
        f"Paragraph {i} describes the dispatch workflow for technicians in detail. " * 4
        for i in range(count)
    ).encode()


class ShortEmbedder:
    """Returns one vector fewer than requested."""

    def embed_batch(self, texts):
        return np.ones((max(len(texts) - 1, 0), 4), dtype=np.float32)

    def embed_one(self, text):
        return np.ones(4, dtype=np.float32)


@pytest.mark.unit
class TestUpload:
    """Tests for IngestionPipeline.upload."""

    def test_text_upload_becomes_ready(self, pipeline, store, blob_storage):
        result = pipeline.upload(REFUND_TEXT.encode(), "Refund Policy.txt", "text/plain", "user-1")

        assert result.success is True
        assert result.chunk_count == 1
        assert result.error is None

        document = store.get_document(result.document_id)
        assert document.status == DocumentStatus.READY
        assert document.name == "Refund Policy.txt"
        assert document.original_name == "Refund Policy.txt"
        assert document.size == len(REFUND_TEXT)
        assert document.chunk_count == 1
        assert document.processed_at is not None
        assert document.error_message is None
        assert document.storage_key in blob_storage

    def test_ready_metadata(self, pipeline, store):
        result = pipeline.upload(REFUND_TEXT.encode(), "Refund Policy.txt", "text/plain", "user-1")

        metadata = store.get_document(result.document_id).metadata
        assert metadata == {
            "totalTokens": 34,
            "avgChunkSize": 34,
            "textLength": len(REFUND_TEXT),
            "pageCount": None,
            "extractionWarnings": None,
            "embedded": True,
        }

    def test_chunks_are_embedded(self, pipeline, store, fake_embedder):
        result = pipeline.upload(_paragraphs(6), "Dispatch.txt", "text/plain", "user-1")

        chunks = store.get_chunks(result.document_id)
        assert len(chunks) == result.chunk_count > 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        for chunk in chunks:
            np.testing.assert_allclose(chunk.embedding, fake_embedder.embed_text(chunk.content))
            assert set(chunk.metadata) == {"startChar", "endChar"}

    def test_markdown_upload(self, pipeline, store, sample_documents):
        content = sample_documents["FSDS Overview.md"].encode()

        result = pipeline.upload(content, "FSDS Overview.md", "text/markdown", "user-1")

        chunks = store.get_chunks(result.document_id)
        assert result.success
        assert any(chunk.content.startswith("## Pricing") for chunk in chunks)

    def test_unsupported_type_rejected(self, pipeline, store, blob_storage):
        with pytest.raises(UnsupportedFileError, match="Unsupported file type"):
            pipeline.upload(b"data", "image.png", "image/png", "user-1")

        assert len(blob_storage) == 0
        assert store.list_documents("user-1") == []

    def test_too_large_rejected(self, store, blob_storage):
        pipeline = IngestionPipeline(store, blob_storage, max_file_size=10)

        with pytest.raises(UnsupportedFileError, match="File too large"):
            pipeline.upload(b"x" * 11, "big.txt", "text/plain", "user-1")

        assert len(blob_storage) == 0

    def test_shared_upload_uses_organization_key(self, pipeline, store):
        shared = pipeline.upload(
            REFUND_TEXT.encode(), "a.txt", "text/plain", "user-1",
            organization_id="org-1", shared=True,
        )
        private = pipeline.upload(
            REFUND_TEXT.encode(), "b.txt", "text/plain", "user-1", organization_id="org-1",
        )

        assert store.get_document(shared.document_id).storage_key.startswith("orgs/org-1/")
        assert store.get_document(private.document_id).storage_key.startswith("users/user-1/")
        assert store.get_document(shared.document_id).shared is True
        assert store.get_document(private.document_id).organization_id == "org-1"


@pytest.mark.unit
class TestProcessingFailures:
    """Tests for documents that end up failed."""

    def test_empty_text(self, pipeline, store):
        result = pipeline.upload(b"  \n\n \t ", "empty.txt", "text/plain", "user-1")

        document = store.get_document(result.document_id)
        assert result.success is False
        assert result.error == "No text content extracted from document"
        assert document.status == DocumentStatus.FAILED
        assert document.error_message == "No text content extracted from document"
        assert store.get_chunks(document.id) == []

    def test_zero_chunks(self, pipeline, store, monkeypatch):
        monkeypatch.setattr(
            "kbsearch.ingestion.pipeline.chunk_document", lambda *args, **kwargs: []
        )

        result = pipeline.upload(REFUND_TEXT.encode(), "a.txt", "text/plain", "user-1")

        assert result.success is False
        assert store.get_document(result.document_id).error_message == (
            "Document produced no chunks"
        )

    def test_parser_failure(self, store, blob_storage, fake_embedder):
        def broken_parser(content: bytes) -> ExtractionResult:
            raise RuntimeError("corrupt xref table")

        pipeline = IngestionPipeline(
            store,
            blob_storage,
            extractor=DelegatingExtractor({PDF_MIME_TYPE: broken_parser}),
            embedder=fake_embedder,
        )

        result = pipeline.upload(b"%PDF-1.4", "report.pdf", PDF_MIME_TYPE, "user-1")

        assert result.success is False
        assert result.error == "PDF extraction failed: corrupt xref table"
        assert store.get_document(result.document_id).status == DocumentStatus.FAILED

    def test_docx_without_parser_rejected(self, pipeline, store, blob_storage):
        with pytest.raises(UnsupportedFileError, match="Unsupported file type"):
            pipeline.upload(b"PK\x03\x04", "contract.docx", DOCX_MIME_TYPE, "user-1")

        assert len(blob_storage) == 0
        assert store.list_documents("user-1") == []

    def test_pdf_rejected_when_extractor_has_no_pdf_parser(self, store, blob_storage):
        pipeline = IngestionPipeline(store, blob_storage, extractor=DelegatingExtractor())

        with pytest.raises(UnsupportedFileError, match="Unsupported file type"):
            pipeline.upload(b"%PDF-1.4", "report.pdf", PDF_MIME_TYPE, "user-1")

        assert len(blob_storage) == 0

    def test_unreadable_pdf_fails(self, pipeline, store):
        result = pipeline.upload(b"%PDF-1.4 truncated", "report.pdf", PDF_MIME_TYPE, "user-1")

        assert result.success is False
        assert store.get_document(result.document_id).status == DocumentStatus.FAILED

    def test_missing_blob(self, pipeline, store, blob_storage):
        result = pipeline.upload(REFUND_TEXT.encode(), "a.txt", "text/plain", "user-1")
        blob_storage.delete(store.get_document(result.document_id).storage_key)

        reprocessed = pipeline.reprocess_document(result.document_id)

        assert reprocessed.success is False
        assert store.get_document(result.document_id).status == DocumentStatus.FAILED

    def test_unknown_document(self, pipeline):
        with pytest.raises(DocumentNotFoundError, match="Document not found: nope"):
            pipeline.process_document("nope")


@pytest.mark.unit
class TestPdfIngestion:
    """Tests for PDF parsing and the scanned-PDF warning."""

    def test_default_extractor_parses_pdf(self, pipeline, store):
        document = fitz.open()
        for body in ("Refund requests are reviewed weekly.", "Annual plans renew automatically."):
            page = document.new_page()
            page.insert_text((72, 72), body)
        content = document.tobytes()
        document.close()

        result = pipeline.upload(content, "policy.pdf", PDF_MIME_TYPE, "user-1")

        stored = store.get_document(result.document_id)
        assert result.success is True
        assert stored.metadata["pageCount"] == 2
        text = " ".join(chunk.content for chunk in store.get_chunks(stored.id))
        assert "Refund requests are reviewed weekly." in text
        assert "Annual plans renew automatically." in text

    def test_warning_recorded_and_document_ready(self, store, blob_storage):
        def sparse_parser(content: bytes) -> ExtractionResult:
            return ExtractionResult(text="Page 1", page_count=3)

        pipeline = IngestionPipeline(
            store,
            blob_storage,
            extractor=DelegatingExtractor({PDF_MIME_TYPE: sparse_parser}),
        )

        result = pipeline.upload(b"%PDF-1.4", "scan.pdf", PDF_MIME_TYPE, "user-1")

        document = store.get_document(result.document_id)
        assert result.success is True
        assert document.metadata["pageCount"] == 3
        assert document.metadata["extractionWarnings"] == [SCANNED_PDF_WARNING]
        assert document.metadata["embedded"] is False


@pytest.mark.unit
class TestEmbeddingDegradation:
    """Embedding outages leave documents ready and keyword-searchable."""

    def test_failing_embedder_still_ready(self, store, blob_storage, failing_embedder):
        pipeline = IngestionPipeline(store, blob_storage, embedder=failing_embedder)

        result = pipeline.upload(REFUND_TEXT.encode(), "Policy.txt", "text/plain", "user-1")

        document = store.get_document(result.document_id)
        assert result.success is True
        assert document.status == DocumentStatus.READY
        assert document.metadata["embedded"] is False
        assert all(chunk.embedding is None for chunk in store.get_chunks(document.id))

    def test_unembedded_document_found_by_hybrid_search(
        self, store, blob_storage, failing_embedder, fake_embedder
    ):
        pipeline = IngestionPipeline(store, blob_storage, embedder=failing_embedder)
        result = pipeline.upload(REFUND_TEXT.encode(), "Policy.txt", "text/plain", "user-1")

        results = HybridRetriever(store, fake_embedder).search("refund", "user-1")

        assert [r.document_id for r in results] == [result.document_id]
        assert results[0].match_type == MatchType.HYBRID

    def test_unembedded_document_not_found_by_vector_only_query(
        self, store, blob_storage, failing_embedder, fake_embedder
    ):
        pipeline = IngestionPipeline(store, blob_storage, embedder=failing_embedder)
        pipeline.upload(REFUND_TEXT.encode(), "Policy.txt", "text/plain", "user-1")

        results = HybridRetriever(store, fake_embedder).search(
            "what is it", "user-1", threshold=0.3
        )

        assert results == []
        assert fake_embedder.calls == [["what is it"]]

    def test_vector_count_mismatch_treated_as_failure(self, store, blob_storage):
        pipeline = IngestionPipeline(store, blob_storage, embedder=ShortEmbedder())

        result = pipeline.upload(REFUND_TEXT.encode(), "Policy.txt", "text/plain", "user-1")

        assert result.success is True
        assert store.get_document(result.document_id).metadata["embedded"] is False


@pytest.mark.unit
class TestReprocessAndDelete:
    """Tests for reprocess_document and delete_document."""

    def test_reprocess_replaces_chunks_and_clears_error(self, pipeline, store):
        result = pipeline.upload(_paragraphs(4), "Dispatch.txt", "text/plain", "user-1")
        old_ids = {chunk.id for chunk in store.get_chunks(result.document_id)}
        store.update_document(result.document_id, error_message="stale error")

        reprocessed = pipeline.reprocess_document(result.document_id)

        document = store.get_document(result.document_id)
        new_chunks = store.get_chunks(result.document_id)
        assert reprocessed.success is True
        assert document.status == DocumentStatus.READY
        assert document.error_message is None
        assert len(new_chunks) == len(old_ids)
        assert old_ids.isdisjoint(chunk.id for chunk in new_chunks)

    def test_reprocess_recovers_failed_document(self, pipeline, store, monkeypatch):
        monkeypatch.setattr(
            "kbsearch.ingestion.pipeline.chunk_document", lambda *args, **kwargs: []
        )
        result = pipeline.upload(REFUND_TEXT.encode(), "a.txt", "text/plain", "user-1")
        assert store.get_document(result.document_id).status == DocumentStatus.FAILED
        monkeypatch.undo()

        reprocessed = pipeline.reprocess_document(result.document_id)

        assert reprocessed.success is True
        assert store.get_document(result.document_id).error_message is None

    def test_reprocess_keeps_existing_metadata(self, pipeline, store):
        result = pipeline.upload(REFUND_TEXT.encode(), "a.txt", "text/plain", "user-1")
        store.update_document(result.document_id, metadata={"source": "crm"})

        pipeline.reprocess_document(result.document_id)

        metadata = store.get_document(result.document_id).metadata
        assert metadata["source"] == "crm"
        assert metadata["embedded"] is True

    def test_status_passes_through_processing(self, pipeline, store, monkeypatch):
        statuses = []
        original = store.update_document

        def recording_update(document_id, **fields):
            if "status" in fields:
                statuses.append(fields["status"])
            return original(document_id, **fields)

        monkeypatch.setattr(store, "update_document", recording_update)

        result = pipeline.upload(REFUND_TEXT.encode(), "a.txt", "text/plain", "user-1")
        pipeline.reprocess_document(result.document_id)

        assert statuses == [
            DocumentStatus.PROCESSING,
            DocumentStatus.READY,
            DocumentStatus.PENDING,
            DocumentStatus.PROCESSING,
            DocumentStatus.READY,
        ]

    def test_reprocess_unknown_document(self, pipeline):
        with pytest.raises(DocumentNotFoundError):
            pipeline.reprocess_document("nope")

    def test_delete_removes_blob_chunks_and_document(self, pipeline, store, blob_storage):
        result = pipeline.upload(REFUND_TEXT.encode(), "a.txt", "text/plain", "user-1")
        storage_key = store.get_document(result.document_id).storage_key

        pipeline.delete_document(result.document_id)

        assert store.get_document(result.document_id) is None
        assert store.get_chunks(result.document_id) == []
        assert storage_key not in blob_storage

    def test_delete_unknown_document(self, pipeline):
        with pytest.raises(DocumentNotFoundError):
            pipeline.delete_document("nope")


@pytest.mark.unit
class TestBatching:
    """Chunks are written and backfilled in batches."""

    def test_insert_batches(self, store, blob_storage, fake_embedder, monkeypatch):
        batch_sizes = []
        original = store.insert_chunks

        def recording_insert(document_id, chunks):
            batch_sizes.append(len(chunks))
            return original(document_id, chunks)

        monkeypatch.setattr(store, "insert_chunks", recording_insert)
        pipeline = IngestionPipeline(
            store,
            blob_storage,
            embedder=fake_embedder,
            chunk_size=100,
            chunk_overlap=10,
            min_chunk_size=5,
            insert_batch_size=2,
        )

        result = pipeline.upload(_paragraphs(8), "Dispatch.txt", "text/plain", "user-1")

        assert sum(batch_sizes) == result.chunk_count
        assert all(size <= 2 for size in batch_sizes)
        assert len(batch_sizes) == -(-result.chunk_count // 2)
        chunks = store.get_chunks(result.document_id)
        for chunk in chunks:
            np.testing.assert_allclose(chunk.embedding, fake_embedder.embed_text(chunk.content))
