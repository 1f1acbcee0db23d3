"""
Testes para cells_lsp/documents.py

Cobertura:
- open / update / close / snapshot
- update de documento não aberto
- Snapshots permanecem válidos após alterações
"""

import pytest

from cells_lsp.documents import Document, DocumentStore, UnknownDocumentError

URI = "file:///tmp/regra.cel"


def test_open_and_snapshot():
    store = DocumentStore()
    store.open(URI, 1, "1 + 2")
    assert store.snapshot(URI) == Document(URI, 1, "1 + 2")
    assert URI in store
    assert len(store) == 1


def test_update_replaces_text():
    store = DocumentStore()
    store.open(URI, 1, "1 + 2")
    store.update(URI, 2, "3")
    assert store.snapshot(URI).text == "3"
    assert store.snapshot(URI).version == 2


def test_update_unknown_document():
    """Alterar documento não aberto levanta UnknownDocumentError."""
    store = DocumentStore()
    with pytest.raises(UnknownDocumentError) as exc:
        store.update(URI, 2, "x")
    assert exc.value.uri == URI
    assert store.snapshot(URI) is None


def test_close_removes_document():
    store = DocumentStore()
    store.open(URI, 1, "x")
    store.close(URI)
    assert store.snapshot(URI) is None
    assert store.uris() == []


def test_close_unknown_is_noop():
    store = DocumentStore()
    store.close(URI)
    assert len(store) == 0


def test_snapshot_is_immutable():
    """Snapshot antigo não muda quando o documento é alterado."""
    store = DocumentStore()
    store.open(URI, 1, "old")
    before = store.snapshot(URI)
    store.update(URI, 2, "new")
    assert before.text == "old"
    assert before.version == 1


def test_reopen_replaces():
    store = DocumentStore()
    store.open(URI, 1, "a")
    store.open(URI, 5, "b")
    assert store.snapshot(URI) == Document(URI, 5, "b")
    assert store.uris() == [URI]
