"""Tests for the document store."""

from types import SimpleNamespace

import pytest

from jsonnet_lsp.documents import DocumentStore
from jsonnet_lsp.parser import Parsed, ParseFailure

URI = "file:///project/main.jsonnet"


def change(text: str) -> SimpleNamespace:
    """Stand-in for a whole-document content change event."""
    return SimpleNamespace(text=text)


@pytest.fixture
def store():
    return DocumentStore()


class TestOpen:
    """Tests for DocumentStore.open."""

    def test_stores_record(self, store):
        assert store.open(URI, "{ a: 1 }") == []
        document = store.lookup(URI)
        assert document.uri == URI
        assert document.text == "{ a: 1 }"
        assert isinstance(document.outcome, Parsed)

    def test_returns_syntax_diagnostics(self, store):
        diagnostics = store.open(URI, "{ a: 1 b: 2 }")
        assert len(diagnostics) == 1
        assert isinstance(store.lookup(URI).outcome, ParseFailure)
        assert store.lookup(URI).diagnostics == diagnostics

    def test_reopen_is_idempotent(self, store):
        first = store.open(URI, "{ a: 1 b: 2 }")
        second = store.open(URI, "{ a: 1 b: 2 }")
        assert first == second
        assert len(store) == 1
        assert store.lookup(URI).text == "{ a: 1 b: 2 }"

    def test_reopen_overwrites(self, store):
        store.open(URI, "{")
        store.open(URI, "{}")
        assert isinstance(store.lookup(URI).outcome, Parsed)


class TestChange:
    """Tests for DocumentStore.change."""

    def test_last_entry_wins(self, store):
        store.open(URI, "{}")
        diagnostics = store.change(URI, [change("{ broken"), change("[1, 2]")])
        assert diagnostics == []
        assert store.lookup(URI).text == "[1, 2]"

    def test_empty_change_list_leaves_record(self, store):
        store.open(URI, "{}")
        assert store.change(URI, []) is None
        assert store.lookup(URI).text == "{}"

    def test_change_unopened_document_creates_record(self, store):
        store.change(URI, [change("{}")])
        assert URI in store


class TestLookupAndClose:
    """Tests for lookup and close."""

    def test_lookup_miss(self, store):
        assert store.lookup("file:///nowhere.jsonnet") is None

    def test_close_removes_record(self, store):
        store.open(URI, "{}")
        assert store.close(URI) is True
        assert store.lookup(URI) is None
        assert len(store) == 0

    def test_close_unknown(self, store):
        assert store.close(URI) is False

    def test_uris(self, store):
        store.open("file:///a.jsonnet", "{}")
        store.open("file:///b.jsonnet", "{}")
        assert sorted(store.uris()) == ["file:///a.jsonnet", "file:///b.jsonnet"]
