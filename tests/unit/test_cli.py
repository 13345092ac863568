"""Unit tests for the typer CLI."""

import pytest
from typer.testing import CliRunner

from kbsearch.cli import app, console

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich tables from wrapping cell text."""
    monkeypatch.setattr(console, "width", 200)


@pytest.fixture
def cli_resources(monkeypatch, store, pipeline, retriever):
    """Point the CLI's resource getters at in-memory components."""
    monkeypatch.setattr("kbsearch.retrieval.resources.get_store", lambda: store)
    monkeypatch.setattr("kbsearch.retrieval.resources.get_pipeline", lambda: pipeline)
    monkeypatch.setattr("kbsearch.retrieval.resources.get_retriever", lambda: retriever)
    return store


@pytest.mark.unit
class TestIngest:
    """Tests for the ingest command."""

    def test_ingest_directory(self, cli_resources, tmp_path, sample_documents):
        for name, text in sample_documents.items():
            (tmp_path / name).write_text(text)
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        result = runner.invoke(app, ["ingest", str(tmp_path), "--user", "user-1"])

        assert result.exit_code == 0, result.output
        assert "ready" in result.output
        documents = cli_resources.list_documents("user-1")
        assert {d.name for d in documents} == set(sample_documents)

    def test_directory_skips_formats_without_parser(self, cli_resources, tmp_path):
        (tmp_path / "notes.txt").write_text("Dispatch notes for the spring rollout.")
        (tmp_path / "contract.docx").write_bytes(b"PK\x03\x04")

        result = runner.invoke(app, ["ingest", str(tmp_path), "--user", "user-1"])

        assert result.exit_code == 0, result.output
        assert [d.name for d in cli_resources.list_documents("user-1")] == ["notes.txt"]

    def test_ingest_failure_exits_nonzero(self, cli_resources, tmp_path):
        (tmp_path / "empty.txt").write_text("   ")

        result = runner.invoke(app, ["ingest", str(tmp_path / "empty.txt"), "--user", "user-1"])

        assert result.exit_code == 1
        assert "failed" in result.output

    def test_shared_requires_org(self, cli_resources, tmp_path):
        (tmp_path / "a.txt").write_text("content")

        result = runner.invoke(app, ["ingest", str(tmp_path), "--user", "user-1", "--shared"])

        assert result.exit_code == 1
        assert "--shared requires --org" in result.output

    def test_no_supported_files(self, cli_resources, tmp_path):
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        result = runner.invoke(app, ["ingest", str(tmp_path), "--user", "user-1"])

        assert result.exit_code == 1
        assert "No supported files" in result.output


@pytest.mark.unit
class TestSearchCommand:
    """Tests for the search command."""

    def test_search_prints_results(self, cli_resources, pipeline, sample_documents):
        text = sample_documents["Refund Policy.txt"]
        pipeline.upload(text.encode(), "Refund Policy.txt", "text/plain", "user-1")

        result = runner.invoke(app, ["search", "refund", "--user", "user-1", "--context"])

        assert result.exit_code == 0, result.output
        assert "Refund Policy.txt" in result.output
        assert "## Relevant Information from Documents" in result.output

    def test_search_without_results(self, cli_resources):
        result = runner.invoke(app, ["search", "refund", "--user", "user-1"])

        assert result.exit_code == 0
        assert "No relevant documents found." in result.output


@pytest.mark.unit
class TestDocumentCommands:
    """Tests for list, reprocess and delete commands."""

    def test_list(self, cli_resources, pipeline):
        pipeline.upload(b"Some notes about dispatch.", "notes.txt", "text/plain", "user-1")

        result = runner.invoke(app, ["list", "--user", "user-1"])

        assert result.exit_code == 0
        assert "notes.txt" in result.output
        assert "ready" in result.output

    def test_list_empty(self, cli_resources):
        result = runner.invoke(app, ["list", "--user", "user-1"])

        assert "No documents." in result.output

    def test_reprocess(self, cli_resources, pipeline):
        uploaded = pipeline.upload(b"Some notes about dispatch.", "notes.txt", "text/plain", "user-1")

        result = runner.invoke(app, ["reprocess", uploaded.document_id])

        assert result.exit_code == 0, result.output
        assert "ready" in result.output

    def test_reprocess_unknown(self, cli_resources):
        result = runner.invoke(app, ["reprocess", "missing"])

        assert result.exit_code == 1
        assert "Document not found: missing" in result.output

    def test_delete(self, cli_resources, pipeline):
        uploaded = pipeline.upload(b"Some notes about dispatch.", "notes.txt", "text/plain", "user-1")

        result = runner.invoke(app, ["delete", uploaded.document_id])

        assert result.exit_code == 0
        assert cli_resources.get_document(uploaded.document_id) is None

    def test_delete_unknown(self, cli_resources):
        result = runner.invoke(app, ["delete", "missing"])

        assert result.exit_code == 1


@pytest.mark.unit
class TestMisc:
    """Tests for version and init-db."""

    def test_version(self):
        from kbsearch import __version__

        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init_db_requires_database_url(self, monkeypatch):
        from kbsearch.config import settings

        monkeypatch.setattr(settings, "database_url", None)

        result = runner.invoke(app, ["init-db"])

        assert result.exit_code == 1
        assert "DATABASE_URL is not configured" in result.output
