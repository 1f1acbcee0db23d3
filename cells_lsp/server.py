"""
server.py - Servidor LSP principal para expressões CEL

Propósito:
    Servidor Language Server Protocol que fornece diagnósticos, hover,
    completion, rename, referências, destaque, semantic tokens,
    formatação, signature help e inlay hints para documentos CEL.

Componentes principais:
    - CellsLanguageServer: estado do servidor e despacho de métodos
    - server: instância global com os handlers registrados via @server.feature
    - validate_document: análise e publicação de diagnósticos
    - main: ponto de entrada (argparse + logging + STDIO)

Dependências críticas:
    - cells_lsp.jsonrpc: transporte e correlação de mensagens
    - lsprotocol: tipos do protocolo e conversor cattrs (params/resultados)
    - cells_lsp.cel: parser, checker e avaliador

Exemplo de uso:
    python -m cells_lsp --log-level DEBUG

Notas de implementação:
    - Comunica via STDIO; logs vão para stderr
    - Sincronização de documento somente completa (sem edições parciais)
    - Handlers síncronos rodam em um ThreadPoolExecutor para que o loop
      continue lendo frames; abrir, alterar e fechar documento atualizam
      o store no loop, na ordem de chegada
    - Tratamento robusto de exceções na validação (nunca crasha)
    - Diagnósticos podem ser desabilitados via cells.diagnostics.enabled
"""

from __future__ import annotations

import argparse
import asyncio
import inspect
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional

from cattrs.errors import BaseValidationError
from lsprotocol import converters
from lsprotocol.types import (
    CANCEL_REQUEST,
    EXIT,
    INITIALIZE,
    INITIALIZED,
    SET_TRACE,
    SHUTDOWN,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DIAGNOSTIC,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT,
    TEXT_DOCUMENT_FORMATTING,
    TEXT_DOCUMENT_HOVER,
    TEXT_DOCUMENT_INLAY_HINT,
    TEXT_DOCUMENT_PREPARE_RENAME,
    TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS,
    TEXT_DOCUMENT_REFERENCES,
    TEXT_DOCUMENT_RENAME,
    TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL,
    TEXT_DOCUMENT_SIGNATURE_HELP,
    WORKSPACE_DIAGNOSTIC,
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    CancelParams,
    CompletionOptions,
    CompletionParams,
    Diagnostic,
    DiagnosticOptions,
    DidChangeConfigurationParams,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DocumentDiagnosticParams,
    DocumentFormattingParams,
    DocumentHighlightParams,
    HoverParams,
    InitializedParams,
    InitializeParams,
    InitializeResult,
    InlayHintParams,
    PrepareRenameParams,
    PublishDiagnosticsParams,
    ReferenceParams,
    RenameOptions,
    RenameParams,
    SemanticTokensOptions,
    SemanticTokensParams,
    ServerCapabilities,
    SetTraceParams,
    SignatureHelpOptions,
    SignatureHelpParams,
    TextDocumentSyncKind,
    TextDocumentSyncOptions,
    WorkspaceDiagnosticParams,
)

from cells_lsp import __version__
from cells_lsp.cel import Environment
from cells_lsp.completion import TRIGGER_CHARACTERS as COMPLETION_TRIGGERS
from cells_lsp.completion import compute_completion
from cells_lsp.config import ServerSettings
from cells_lsp.diagnostics import build_document_report, compute_diagnostics, internal_error_diagnostic
from cells_lsp.document_highlight import compute_document_highlight
from cells_lsp.documents import DocumentStore, UnknownDocumentError
from cells_lsp.formatting import compute_formatting
from cells_lsp.hover import compute_hover
from cells_lsp.inlay_hints import compute_inlay_hints
from cells_lsp.jsonrpc import Connection, ErrorCodes, JsonRpcError, MessageHandler
from cells_lsp.references import compute_references
from cells_lsp.rename import compute_prepare_rename, compute_rename
from cells_lsp.semantic_tokens import build_legend, compute_semantic_tokens
from cells_lsp.signature_help import TRIGGER_CHARACTERS as SIGNATURE_TRIGGERS
from cells_lsp.signature_help import compute_signature_help
from cells_lsp.workspace_diagnostics import build_workspace_report, compute_workspace_diagnostics

logger = logging.getLogger(__name__)

SERVER_NAME = "cells"

# Tipo dos params de cada método (None: sem params)
PARAMS_TYPES: dict[str, Optional[type]] = {
    INITIALIZE: InitializeParams,
    INITIALIZED: InitializedParams,
    SHUTDOWN: None,
    EXIT: None,
    CANCEL_REQUEST: CancelParams,
    SET_TRACE: SetTraceParams,
    TEXT_DOCUMENT_DID_OPEN: DidOpenTextDocumentParams,
    TEXT_DOCUMENT_DID_CHANGE: DidChangeTextDocumentParams,
    TEXT_DOCUMENT_DID_CLOSE: DidCloseTextDocumentParams,
    WORKSPACE_DID_CHANGE_CONFIGURATION: DidChangeConfigurationParams,
    TEXT_DOCUMENT_HOVER: HoverParams,
    TEXT_DOCUMENT_COMPLETION: CompletionParams,
    TEXT_DOCUMENT_SIGNATURE_HELP: SignatureHelpParams,
    TEXT_DOCUMENT_REFERENCES: ReferenceParams,
    TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT: DocumentHighlightParams,
    TEXT_DOCUMENT_FORMATTING: DocumentFormattingParams,
    TEXT_DOCUMENT_RENAME: RenameParams,
    TEXT_DOCUMENT_PREPARE_RENAME: PrepareRenameParams,
    TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL: SemanticTokensParams,
    TEXT_DOCUMENT_INLAY_HINT: InlayHintParams,
    TEXT_DOCUMENT_DIAGNOSTIC: DocumentDiagnosticParams,
    WORKSPACE_DIAGNOSTIC: WorkspaceDiagnosticParams,
}


@dataclass(frozen=True)
class Feature:
    method: str
    handler: Callable
    options: Any = None


class CellsLanguageServer(MessageHandler):
    """
    Servidor LSP para CEL.

    Attributes:
        documents: Documentos abertos (sincronização completa)
        env: Ambiente CEL compartilhado pelos handlers
        settings: Configuração corrente do cliente
        features: Método → handler registrado
        shutdown_requested: shutdown recebido; só exit é aceito depois
        exit_code: Código de saída definido por exit (None até lá)
    """

    def __init__(
        self,
        name: str,
        version: str,
        env: Optional[Environment] = None,
        features: Optional[dict[str, Feature]] = None,
        max_workers: int = 4,
    ):
        self.name = name
        self.version = version
        self.env = env or Environment()
        self.documents = DocumentStore()
        self.settings = ServerSettings()
        self.features: dict[str, Feature] = dict(features or {})
        self.connection: Optional[Connection] = None
        self.shutdown_requested = False
        self.exit_code: Optional[int] = None
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.converter = converters.get_converter()

    def feature(self, method: str, options: Any = None) -> Callable:
        """Decorador que registra o handler de um método."""

        def decorator(func: Callable) -> Callable:
            self.features[method] = Feature(method, func, options)
            return func

        return decorator

    def fork(self) -> CellsLanguageServer:
        """Nova instância com os mesmos handlers e estado vazio."""
        return CellsLanguageServer(self.name, self.version, features=self.features, max_workers=self._max_workers)

    # --- capabilities -------------------------------------------------

    def capabilities(self) -> ServerCapabilities:
        """Capabilities anunciadas, derivadas dos handlers registrados."""

        def option(method: str, default: Any = True) -> Any:
            feature = self.features.get(method)
            if feature is None:
                return None
            return feature.options if feature.options is not None else default

        return ServerCapabilities(
            text_document_sync=TextDocumentSyncOptions(open_close=True, change=TextDocumentSyncKind.Full),
            hover_provider=option(TEXT_DOCUMENT_HOVER),
            completion_provider=option(TEXT_DOCUMENT_COMPLETION, CompletionOptions()),
            signature_help_provider=option(TEXT_DOCUMENT_SIGNATURE_HELP, SignatureHelpOptions()),
            references_provider=option(TEXT_DOCUMENT_REFERENCES),
            document_highlight_provider=option(TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT),
            document_formatting_provider=option(TEXT_DOCUMENT_FORMATTING),
            rename_provider=option(
                TEXT_DOCUMENT_RENAME,
                RenameOptions(prepare_provider=TEXT_DOCUMENT_PREPARE_RENAME in self.features),
            ),
            semantic_tokens_provider=option(TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL),
            inlay_hint_provider=option(TEXT_DOCUMENT_INLAY_HINT),
            diagnostic_provider=option(
                TEXT_DOCUMENT_DIAGNOSTIC,
                DiagnosticOptions(
                    inter_file_dependencies=False,
                    workspace_diagnostics=WORKSPACE_DIAGNOSTIC in self.features,
                ),
            ),
        )

    # --- despacho -----------------------------------------------------

    async def handle_request(self, method: str, params: Any) -> Any:
        if self.shutdown_requested and method != EXIT:
            raise JsonRpcError(ErrorCodes.INVALID_REQUEST, f"server is shutting down: {method}")
        feature = self.features.get(method)
        if feature is None:
            raise JsonRpcError(ErrorCodes.METHOD_NOT_FOUND, f"method not supported: {method}")
        logger.debug(f"Request {method}")
        result = await self._invoke(feature, self._structure(method, params))
        return self.converter.unstructure(result)

    async def handle_notification(self, method: str, params: Any) -> None:
        feature = self.features.get(method)
        if feature is None:
            logger.debug(f"Notificação sem handler descartada: {method}")
            return
        try:
            structured = self._structure(method, params)
        except JsonRpcError as e:
            logger.error(f"Params inválidos em {method}: {e.message}")
            return
        await self._invoke(feature, structured)

    def _structure(self, method: str, params: Any) -> Any:
        params_type = PARAMS_TYPES.get(method)
        if params_type is None or params is None:
            return params
        try:
            return self.converter.structure(params, params_type)
        except (BaseValidationError, KeyError, TypeError, ValueError) as e:
            raise JsonRpcError(ErrorCodes.INVALID_PARAMS, f"invalid params for {method}: {e}") from e

    async def _invoke(self, feature: Feature, params: Any) -> Any:
        if inspect.iscoroutinefunction(feature.handler):
            return await feature.handler(self, params)
        return await self.run_in_thread(feature.handler, self, params)

    async def run_in_thread(self, func: Callable, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    # --- saída --------------------------------------------------------

    def send_notification(self, method: str, params: Any = None) -> None:
        """
        Envia uma notificação ao cliente.

        Pode ser chamada do loop ou de uma thread do executor.
        """
        connection = self.connection
        if connection is None or connection.closed or self._loop is None:
            logger.debug(f"Notificação {method} descartada: sem conexão")
            return
        payload = self.converter.unstructure(params) if params is not None else None
        coro = connection.notify(method, payload)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            future = self._loop.create_task(coro)
        else:
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        future.add_done_callback(lambda f, m=method: _log_send_failure(m, f))

    def publish_diagnostics(self, uri: str, diagnostics: list[Diagnostic], version: Optional[int] = None) -> None:
        self.send_notification(
            TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS,
            PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics, version=version),
        )

    # --- ciclo de vida ------------------------------------------------

    async def serve(self, reader: asyncio.StreamReader, writer) -> None:
        """Atende uma conexão até ela ser encerrada."""
        self._loop = asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="cells-lsp")
        self.connection = Connection(reader, writer, self)
        self.connection.start()
        try:
            await self.connection.wait_closed()
        finally:
            self._executor.shutdown(wait=False)

    def start_io(self) -> int:
        """
        Atende via STDIO.

        Returns:
            Código de saída: 0 após shutdown + exit, 1 caso contrário
        """
        asyncio.run(self._serve_stdio())
        if self.exit_code is not None:
            return self.exit_code
        return 0 if self.shutdown_requested else 1

    async def _serve_stdio(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer)
        transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout.buffer)
        writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        await self.serve(reader, writer)


def _log_send_failure(method: str, future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug(f"Falha ao enviar {method}: {error}")


# Instância global do servidor
server = CellsLanguageServer(SERVER_NAME, __version__)


# --- ciclo de vida ----------------------------------------------------


@server.feature(INITIALIZE)
def initialize(ls: CellsLanguageServer, params: InitializeParams) -> dict:
    """Lê initializationOptions e anuncia as capabilities."""
    if params is not None and params.initialization_options is not None:
        ls.settings = ServerSettings.from_settings(params.initialization_options)
    client = params.client_info.name if params is not None and params.client_info else "<desconhecido>"
    logger.info(f"Initialize de {client}: {ls.settings}")
    result = ls.converter.unstructure(InitializeResult(capabilities=ls.capabilities()))
    result["serverInfo"] = {"name": ls.name, "version": ls.version}
    return result


@server.feature(INITIALIZED)
def initialized(ls: CellsLanguageServer, params: InitializedParams) -> None:
    logger.info("Cliente inicializado")


@server.feature(SHUTDOWN)
def shutdown(ls: CellsLanguageServer, params) -> None:
    logger.info("Shutdown solicitado")
    ls.shutdown_requested = True


@server.feature(EXIT)
async def exit_(ls: CellsLanguageServer, params) -> None:
    ls.exit_code = 0 if ls.shutdown_requested else 1
    logger.info(f"Exit (código {ls.exit_code})")
    if ls.connection is not None:
        await ls.connection.close()


@server.feature(CANCEL_REQUEST)
def cancel_request(ls: CellsLanguageServer, params: CancelParams) -> None:
    # requests são curtos; o cancelamento é ignorado
    pass


@server.feature(SET_TRACE)
def set_trace(ls: CellsLanguageServer, params: SetTraceParams) -> None:
    pass


# --- documentos -------------------------------------------------------


def validate_document(ls: CellsLanguageServer, uri: str) -> None:
    """
    Analisa um documento e publica diagnósticos.

    Args:
        ls: Instância do servidor
        uri: URI do documento a validar

    Tratamento de Erros:
        - Captura todas as exceções para evitar crash do servidor
        - Em caso de erro inesperado, publica diagnostic genérico
    """
    if not ls.settings.diagnostics_enabled:
        logger.debug(f"Diagnósticos desabilitados, limpando: {uri}")
        ls.publish_diagnostics(uri, [])
        return

    document = ls.documents.snapshot(uri)
    if document is None:
        logger.debug(f"Documento fechado antes da validação: {uri}")
        return

    try:
        diagnostics = compute_diagnostics(document.text, ls.env)
    except Exception as e:
        logger.error(f"Erro ao validar {uri}: {e}", exc_info=True)
        diagnostics = [internal_error_diagnostic(e)]

    logger.debug(f"Publicando {len(diagnostics)} diagnósticos para {uri} (v{document.version})")
    ls.publish_diagnostics(uri, diagnostics, document.version)


@server.feature(TEXT_DOCUMENT_DID_OPEN)
async def did_open(ls: CellsLanguageServer, params: DidOpenTextDocumentParams) -> None:
    doc = params.text_document
    logger.info(f"Documento aberto: {doc.uri}")
    ls.documents.open(doc.uri, doc.version, doc.text)
    await ls.run_in_thread(validate_document, ls, doc.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
async def did_change(ls: CellsLanguageServer, params: DidChangeTextDocumentParams) -> None:
    """Sincronização completa: o último evento traz o texto inteiro."""
    uri = params.text_document.uri
    if not params.content_changes:
        return
    text = params.content_changes[-1].text
    try:
        ls.documents.update(uri, params.text_document.version, text)
    except UnknownDocumentError:
        logger.error(f"didChange de documento não aberto: {uri}")
        return
    logger.info(f"Documento modificado: {uri}")
    await ls.run_in_thread(validate_document, ls, uri)


@server.feature(TEXT_DOCUMENT_DID_CLOSE)
async def did_close(ls: CellsLanguageServer, params: DidCloseTextDocumentParams) -> None:
    uri = params.text_document.uri
    logger.info(f"Documento fechado: {uri}")
    ls.documents.close(uri)
    ls.publish_diagnostics(uri, [])


@server.feature(WORKSPACE_DID_CHANGE_CONFIGURATION)
def did_change_configuration(ls: CellsLanguageServer, params: DidChangeConfigurationParams) -> None:
    """
    Atualiza a configuração e revalida ou limpa os diagnósticos.

    Nota: a configuração vem em params.settings quando o cliente
    sincroniza a seção 'cells'.
    """
    old = ls.settings
    ls.settings = ServerSettings.from_settings(params.settings)
    logger.info(f"Configuração atualizada: {ls.settings}")

    if old.diagnostics_enabled == ls.settings.diagnostics_enabled:
        return
    if ls.settings.diagnostics_enabled:
        logger.info("Diagnósticos reativados, revalidando documentos abertos")
    else:
        logger.info("Diagnósticos desativados, limpando")
    for uri in ls.documents.uris():
        try:
            validate_document(ls, uri)
        except Exception as e:
            logger.error(f"Erro ao revalidar {uri}: {e}", exc_info=True)


# --- features ---------------------------------------------------------


def _source(ls: CellsLanguageServer, uri: str) -> Optional[str]:
    document = ls.documents.snapshot(uri)
    return document.text if document is not None else None


@server.feature(TEXT_DOCUMENT_HOVER)
def hover(ls: CellsLanguageServer, params: HoverParams):
    source = _source(ls, params.text_document.uri)
    if source is None:
        return None
    return compute_hover(source, params.position, ls.env)


@server.feature(TEXT_DOCUMENT_COMPLETION, CompletionOptions(trigger_characters=COMPLETION_TRIGGERS))
def completion(ls: CellsLanguageServer, params: CompletionParams):
    # sem documento ainda devolve as funções globais
    return compute_completion(_source(ls, params.text_document.uri), params.position, ls.env)


@server.feature(TEXT_DOCUMENT_SIGNATURE_HELP, SignatureHelpOptions(trigger_characters=SIGNATURE_TRIGGERS))
def signature_help(ls: CellsLanguageServer, params: SignatureHelpParams):
    source = _source(ls, params.text_document.uri)
    if source is None:
        return None
    return compute_signature_help(source, params.position, ls.env)


@server.feature(TEXT_DOCUMENT_REFERENCES)
def references(ls: CellsLanguageServer, params: ReferenceParams):
    uri = params.text_document.uri
    source = _source(ls, uri)
    if source is None:
        return None
    return compute_references(source, uri, params.position, ls.env)


@server.feature(TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT)
def document_highlight(ls: CellsLanguageServer, params: DocumentHighlightParams):
    source = _source(ls, params.text_document.uri)
    if source is None:
        return None
    return compute_document_highlight(source, params.position, ls.env)


@server.feature(TEXT_DOCUMENT_FORMATTING)
def formatting(ls: CellsLanguageServer, params: DocumentFormattingParams):
    source = _source(ls, params.text_document.uri)
    if source is None:
        return None
    return compute_formatting(source, ls.env)


@server.feature(TEXT_DOCUMENT_PREPARE_RENAME)
def prepare_rename(ls: CellsLanguageServer, params: PrepareRenameParams):
    source = _source(ls, params.text_document.uri)
    if source is None:
        return None
    return compute_prepare_rename(source, params.position, ls.env)


@server.feature(TEXT_DOCUMENT_RENAME, RenameOptions(prepare_provider=True))
def rename(ls: CellsLanguageServer, params: RenameParams):
    uri = params.text_document.uri
    source = _source(ls, uri)
    if source is None:
        return None
    return compute_rename(source, uri, params.position, params.new_name, ls.env)


@server.feature(TEXT_DOCUMENT_SEMANTIC_TOKENS_FULL, SemanticTokensOptions(legend=build_legend(), full=True))
def semantic_tokens_full(ls: CellsLanguageServer, params: SemanticTokensParams):
    source = _source(ls, params.text_document.uri)
    if source is None:
        return None
    return compute_semantic_tokens(source, ls.env)


@server.feature(TEXT_DOCUMENT_INLAY_HINT)
def inlay_hint(ls: CellsLanguageServer, params: InlayHintParams):
    if not ls.settings.inlay_hints_enabled:
        return []
    source = _source(ls, params.text_document.uri)
    if source is None:
        return []
    return compute_inlay_hints(source, ls.env, params.range)


@server.feature(TEXT_DOCUMENT_DIAGNOSTIC)
def document_diagnostic(ls: CellsLanguageServer, params: DocumentDiagnosticParams):
    source = _source(ls, params.text_document.uri)
    if source is None or not ls.settings.diagnostics_enabled:
        return build_document_report([])
    return build_document_report(compute_diagnostics(source, ls.env))


@server.feature(WORKSPACE_DIAGNOSTIC)
def workspace_diagnostic(ls: CellsLanguageServer, params: WorkspaceDiagnosticParams):
    if not ls.settings.diagnostics_enabled:
        return build_workspace_report({})
    diagnostics_map = compute_workspace_diagnostics(
        ls.documents, lambda text: compute_diagnostics(text, ls.env)
    )
    return build_workspace_report(diagnostics_map)


# --- entrada ----------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cells-lsp", description="Language server para expressões CEL")
    parser.add_argument("command", nargs="?", default="serve", choices=["serve"], help="Modo de execução")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Nível de log (stderr)",
    )
    parser.add_argument("--log-file", default=None, help="Grava o log em arquivo em vez de stderr")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """
    Ponto de entrada principal do servidor.

    Inicia o servidor em modo STDIO; stdout é reservado ao protocolo.
    """
    args = _build_parser().parse_args(argv)
    destination = {"filename": args.log_file} if args.log_file else {"stream": sys.stderr}
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        **destination,
    )
    logger.info(f"Iniciando cells language server {__version__}")
    logger.info(f"Python executable: {sys.executable}")
    sys.exit(server.start_io())


if __name__ == "__main__":
    main()
