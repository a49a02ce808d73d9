"""Tests for the initialize result."""

from jsonnet_lsp import __version__
from jsonnet_lsp.capabilities import SERVER_NAME, initialize_result


class TestInitializeResult:
    """Tests for the advertised capabilities."""

    def test_text_sync_is_full_with_open_close(self):
        capabilities = initialize_result()["capabilities"]
        assert capabilities["textDocumentSync"] == {"openClose": True, "change": 1}

    def test_providers(self):
        capabilities = initialize_result()["capabilities"]
        assert capabilities["completionProvider"] == {}
        assert capabilities["definitionProvider"] is True
        assert capabilities["documentFormattingProvider"] is True
        assert capabilities["documentLinkProvider"] == {"resolveProvider": False}
        assert capabilities["renameProvider"] is True
        assert capabilities["selectionRangeProvider"] is True

    def test_server_info(self):
        assert initialize_result()["serverInfo"] == {"name": SERVER_NAME, "version": __version__}
