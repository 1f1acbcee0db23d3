"""
Testes para cells_lsp/server.py

Cobertura:
- validate_document: publicação, diagnósticos desabilitados, erro interno
- didChangeConfiguration: revalidação ao alternar diagnósticos
- Capabilities derivadas dos handlers registrados
- Despacho: método desconhecido, params inválidos, requests após shutdown
- Handlers via handle_request (hover, rename, pull diagnostics, inlay hints)
- Sessão completa sobre fluxos em memória: initialize → didOpen →
  publishDiagnostics → hover → didChange → shutdown → exit
"""

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
from lsprotocol.types import DiagnosticSeverity, DidChangeConfigurationParams, TextDocumentSyncKind

from cells_lsp.config import ServerSettings
from cells_lsp.jsonrpc import ErrorCodes, JsonRpcError, encode_frame, read_frame
from cells_lsp.server import (
    SERVER_NAME,
    _build_parser,
    did_change_configuration,
    server,
    validate_document,
)

URI = "file:///tmp/regra.cel"


@pytest.fixture
def ls():
    """Servidor novo com os handlers registrados e publicação simulada."""
    instance = server.fork()
    instance.publish_diagnostics = MagicMock()
    return instance


def _text_document_position(line, character, uri=URI):
    return {"textDocument": {"uri": uri}, "position": {"line": line, "character": character}}


# --- validação --------------------------------------------------------


class TestValidateDocument:
    def test_publishes_with_version(self, ls):
        ls.documents.open(URI, 3, '1 + "a"')
        validate_document(ls, URI)
        uri, diagnostics, version = ls.publish_diagnostics.call_args.args
        assert uri == URI
        assert version == 3
        assert len(diagnostics) == 1
        assert diagnostics[0].severity == DiagnosticSeverity.Warning

    def test_valid_document(self, ls):
        ls.documents.open(URI, 1, "1 + 2")
        validate_document(ls, URI)
        ls.publish_diagnostics.assert_called_once_with(URI, [], 1)

    def test_disabled(self, ls):
        """Com diagnósticos desabilitados, publica lista vazia."""
        ls.settings = ServerSettings(diagnostics_enabled=False)
        ls.documents.open(URI, 1, "1 +")
        validate_document(ls, URI)
        ls.publish_diagnostics.assert_called_once_with(URI, [])

    def test_closed_document(self, ls):
        validate_document(ls, URI)
        ls.publish_diagnostics.assert_not_called()

    def test_internal_error(self, ls):
        """Exceção inesperada vira um diagnóstico genérico, sem crash."""
        ls.documents.open(URI, 1, "1")
        with patch("cells_lsp.server.compute_diagnostics", side_effect=RuntimeError("boom")):
            validate_document(ls, URI)
        _uri, diagnostics, _version = ls.publish_diagnostics.call_args.args
        assert len(diagnostics) == 1
        assert "boom" in diagnostics[0].message


class TestConfiguration:
    def test_disable_clears(self, ls):
        ls.documents.open(URI, 1, "1 +")
        params = DidChangeConfigurationParams(settings={"cells": {"diagnostics": {"enabled": False}}})
        did_change_configuration(ls, params)
        assert ls.settings.diagnostics_enabled is False
        ls.publish_diagnostics.assert_called_once_with(URI, [])

    def test_unchanged_does_not_revalidate(self, ls):
        ls.documents.open(URI, 1, "1 +")
        did_change_configuration(ls, DidChangeConfigurationParams(settings={"cells": {}}))
        ls.publish_diagnostics.assert_not_called()

    def test_enable_revalidates(self, ls):
        ls.settings = ServerSettings(diagnostics_enabled=False)
        ls.documents.open(URI, 2, "1 +")
        did_change_configuration(ls, DidChangeConfigurationParams(settings={"diagnostics.enabled": True}))
        _uri, diagnostics, version = ls.publish_diagnostics.call_args.args
        assert version == 2
        assert diagnostics[0].severity == DiagnosticSeverity.Error


# --- capabilities -----------------------------------------------------


class TestCapabilities:
    def test_advertised_features(self, ls):
        caps = ls.capabilities()
        assert caps.text_document_sync.change == TextDocumentSyncKind.Full
        assert caps.text_document_sync.open_close is True
        assert caps.hover_provider is True
        assert caps.completion_provider.trigger_characters == ["."]
        assert caps.signature_help_provider.trigger_characters == ["(", ","]
        assert caps.rename_provider.prepare_provider is True
        assert caps.semantic_tokens_provider.full is True
        assert caps.semantic_tokens_provider.legend.token_types[0] == "property"
        assert caps.diagnostic_provider.workspace_diagnostics is True
        assert caps.inlay_hint_provider is True

    def test_unregistered_feature_not_advertised(self):
        from cells_lsp.server import CellsLanguageServer

        bare = CellsLanguageServer("x", "0")
        caps = bare.capabilities()
        assert caps.hover_provider is None
        assert caps.rename_provider is None


# --- despacho ---------------------------------------------------------


def _request(ls, method, params=None):
    return asyncio.run(ls.handle_request(method, params))


class TestDispatch:
    def test_initialize(self, ls):
        result = _request(ls, "initialize", {
            "processId": None,
            "rootUri": None,
            "capabilities": {},
            "initializationOptions": {"cells": {"inlayHints": {"enabled": False}}},
        })
        assert result["serverInfo"]["name"] == SERVER_NAME
        assert result["capabilities"]["hoverProvider"] is True
        assert result["capabilities"]["textDocumentSync"]["change"] == 1
        assert ls.settings.inlay_hints_enabled is False

    def test_unknown_method(self, ls):
        with pytest.raises(JsonRpcError) as exc:
            _request(ls, "foo/bar")
        assert exc.value.code == ErrorCodes.METHOD_NOT_FOUND
        assert exc.value.message == "method not supported: foo/bar"

    def test_invalid_params(self, ls):
        with pytest.raises(JsonRpcError) as exc:
            _request(ls, "textDocument/hover", {"textDocument": {}})
        assert exc.value.code == ErrorCodes.INVALID_PARAMS

    def test_after_shutdown(self, ls):
        assert _request(ls, "shutdown") is None
        assert ls.shutdown_requested is True
        with pytest.raises(JsonRpcError) as exc:
            _request(ls, "textDocument/hover", _text_document_position(0, 0))
        assert exc.value.code == ErrorCodes.INVALID_REQUEST

    def test_hover(self, ls):
        ls.documents.open(URI, 1, "1 + 2")
        result = _request(ls, "textDocument/hover", _text_document_position(0, 2))
        assert result["contents"]["kind"] == "markdown"
        assert result["contents"]["value"].startswith("**Operator**: `+`")
        assert result["range"]["start"] == {"line": 0, "character": 2}

    def test_hover_unknown_document(self, ls):
        assert _request(ls, "textDocument/hover", _text_document_position(0, 0)) is None

    def test_rename_invalid_name(self, ls):
        ls.documents.open(URI, 1, "x + x")
        params = dict(_text_document_position(0, 0), newName="true")
        with pytest.raises(JsonRpcError) as exc:
            _request(ls, "textDocument/rename", params)
        assert exc.value.code == ErrorCodes.INVALID_PARAMS

    def test_rename(self, ls):
        ls.documents.open(URI, 1, "x + x")
        params = dict(_text_document_position(0, 0), newName="y")
        result = _request(ls, "textDocument/rename", params)
        assert [e["range"]["start"]["character"] for e in result["changes"][URI]] == [0, 4]

    def test_pull_diagnostics(self, ls):
        ls.documents.open(URI, 1, "1 +")
        result = _request(ls, "textDocument/diagnostic", {"textDocument": {"uri": URI}})
        assert result["kind"] == "full"
        assert len(result["items"]) == 1

    def test_workspace_diagnostics(self, ls):
        ls.documents.open(URI, 4, "y")
        result = _request(ls, "workspace/diagnostic", {"previousResultIds": []})
        assert result["items"][0]["uri"] == URI
        assert result["items"][0]["version"] == 4

    def test_inlay_hints_disabled(self, ls):
        ls.settings = ServerSettings(inlay_hints_enabled=False)
        ls.documents.open(URI, 1, "1 + 2")
        params = {
            "textDocument": {"uri": URI},
            "range": {"start": {"line": 0, "character": 0}, "end": {"line": 1, "character": 0}},
        }
        assert _request(ls, "textDocument/inlayHint", params) == []

    def test_semantic_tokens(self, ls):
        ls.documents.open(URI, 1, "x + 1")
        result = _request(ls, "textDocument/semanticTokens/full", {"textDocument": {"uri": URI}})
        assert result["data"] == [0, 0, 1, 0, 0, 0, 2, 1, 17, 0, 0, 2, 1, 15, 0]


def test_fork_shares_handlers():
    forked = server.fork()
    assert forked.features == server.features
    assert forked.documents is not server.documents


def test_cli_parser():
    args = _build_parser().parse_args(["--log-level", "DEBUG"])
    assert args.command == "serve"
    assert args.log_level == "DEBUG"
    assert args.log_file is None


# --- sessão completa --------------------------------------------------


class FakeWriter:
    """Writer em memória: o que o servidor escreve vira um StreamReader."""

    def __init__(self):
        self.output = asyncio.StreamReader()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.output.feed_data(data)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.output.feed_eof()


class LspClient:
    """Cliente mínimo: envia frames ao servidor e coleta respostas e notificações."""

    def __init__(self):
        self.server_in = asyncio.StreamReader()
        self.writer = FakeWriter()
        self.notifications: asyncio.Queue = asyncio.Queue()
        self._pending: dict = {}
        self._next_id = 0
        self._reader = asyncio.create_task(self._read())

    async def _read(self):
        while True:
            body = await read_frame(self.writer.output)
            if body is None:
                return
            message = json.loads(body)
            if "method" not in message:
                self._pending.pop(message["id"]).set_result(message)
            else:
                await self.notifications.put(message)

    async def request(self, method, params=None):
        self._next_id += 1
        future = asyncio.get_running_loop().create_future()
        self._pending[self._next_id] = future
        payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method}
        if params is not None:
            payload["params"] = params
        self.server_in.feed_data(encode_frame(payload))
        return await asyncio.wait_for(future, 10)

    def notify(self, method, params=None):
        payload = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        self.server_in.feed_data(encode_frame(payload))

    async def next_notification(self, method):
        while True:
            message = await asyncio.wait_for(self.notifications.get(), 10)
            if message["method"] == method:
                return message["params"]


def test_full_session():
    """Ciclo de vida completo sobre fluxos em memória."""
    session = server.fork()

    async def scenario():
        client = LspClient()
        serving = asyncio.create_task(session.serve(client.server_in, client.writer))

        init = await client.request("initialize", {"processId": None, "rootUri": None, "capabilities": {}})
        assert init["result"]["serverInfo"]["name"] == SERVER_NAME
        client.notify("initialized", {})

        client.notify("textDocument/didOpen", {
            "textDocument": {"uri": URI, "languageId": "cel", "version": 1, "text": '1 + "a"'},
        })
        published = await client.next_notification("textDocument/publishDiagnostics")
        assert published["uri"] == URI
        assert published["version"] == 1
        assert len(published["diagnostics"]) == 1
        assert "'+'" in published["diagnostics"][0]["message"]

        hover = await client.request("textDocument/hover", _text_document_position(0, 2))
        assert hover["result"]["contents"]["value"].startswith("**Operator**: `+`")

        unknown = await client.request("custom/unknown", {})
        assert unknown["error"]["code"] == ErrorCodes.METHOD_NOT_FOUND

        client.notify("textDocument/didChange", {
            "textDocument": {"uri": URI, "version": 2},
            "contentChanges": [{"text": "1 + 2"}],
        })
        published = await client.next_notification("textDocument/publishDiagnostics")
        assert published["version"] == 2
        assert published["diagnostics"] == []

        client.notify("textDocument/didClose", {"textDocument": {"uri": URI}})
        published = await client.next_notification("textDocument/publishDiagnostics")
        assert published["diagnostics"] == []

        shutdown = await client.request("shutdown")
        assert shutdown["result"] is None
        after = await client.request("textDocument/hover", _text_document_position(0, 0))
        assert after["error"]["code"] == ErrorCodes.INVALID_REQUEST

        client.notify("exit")
        await asyncio.wait_for(serving, 10)
        assert client.writer.closed

    asyncio.run(scenario())
    assert session.exit_code == 0
