"""
jsonrpc.py - Transporte JSON-RPC 2.0 com framing Content-Length

Propósito:
    Ler e escrever mensagens JSON-RPC em um fluxo de bytes, distinguir
    requests, notificações e respostas, e correlacionar chamadas de saída
    com suas respostas.

Componentes principais:
    - encode_frame / read_frame / decode_message: codec de frames
    - Request, Notification, Response: mensagens decodificadas
    - ErrorCodes / JsonRpcError: taxonomia fixa de erros
    - Connection: tarefa leitora, despacho e chamadas de saída

Notas de implementação:
    - Uma única tarefa lê frames; cada request roda em sua própria tarefa
    - Notificações passam por uma fila FIFO servida por um único worker,
      preservando a ordem de recebimento (edições sucessivas do mesmo
      documento são aplicadas em ordem)
    - Toda escrita passa por um asyncio.Lock: frames nunca se intercalam
    - Erro de framing ou EOF encerra a conexão; JSON inválido em um frame
      é registrado e ignorado
    - No encerramento, toda chamada pendente recebe ConnectionClosed

Dependências críticas:
    - asyncio: StreamReader / StreamWriter
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"


class ErrorCodes:
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class JsonRpcError(Exception):
    """Erro com código JSON-RPC; vira a resposta de erro de um request."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    @classmethod
    def from_dict(cls, error: dict) -> JsonRpcError:
        return cls(
            int(error.get("code", ErrorCodes.INTERNAL_ERROR)),
            str(error.get("message", "")),
            error.get("data"),
        )


class FrameError(Exception):
    """Frame malformado: o alinhamento com o fluxo foi perdido."""


class ConnectionClosed(Exception):
    """A conexão foi encerrada antes da resposta."""


@dataclass(frozen=True)
class Request:
    method: str
    params: Any
    id: Union[int, str]


@dataclass(frozen=True)
class Notification:
    method: str
    params: Any


@dataclass(frozen=True)
class Response:
    id: Union[int, str, None]
    result: Any = None
    error: Optional[dict] = None


Message = Union[Request, Notification, Response]


# --- codec ------------------------------------------------------------


def encode_frame(payload: Any) -> bytes:
    """Serializa um payload JSON com o cabeçalho Content-Length."""
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


async def read_frame(reader: asyncio.StreamReader) -> Optional[bytes]:
    """
    Lê um frame completo do fluxo.

    Args:
        reader: Fluxo de entrada

    Returns:
        Corpo do frame, ou None em EOF limpo antes de um cabeçalho

    Raises:
        FrameError: cabeçalho inválido, EOF no cabeçalho ou corpo truncado
    """
    content_length: Optional[int] = None
    first = True
    while True:
        line = await reader.readline()
        if not line:
            if first:
                return None
            raise FrameError("EOF dentro do cabeçalho")
        first = False
        if not line.endswith(b"\n"):
            raise FrameError("EOF dentro do cabeçalho")
        text = line.decode("ascii", errors="replace").strip()
        if not text:
            break
        name, sep, value = text.partition(":")
        if not sep:
            raise FrameError(f"Linha de cabeçalho inválida: {text!r}")
        if name.strip().lower() == "content-length":
            try:
                content_length = int(value.strip())
            except ValueError as e:
                raise FrameError(f"Content-Length inválido: {value.strip()!r}") from e

    if content_length is None or content_length < 0:
        raise FrameError("Cabeçalho sem Content-Length válido")
    try:
        return await reader.readexactly(content_length)
    except asyncio.IncompleteReadError as e:
        raise FrameError(
            f"Corpo truncado: esperados {content_length} bytes, recebidos {len(e.partial)}"
        ) from e


def decode_message(body: bytes) -> Message:
    """
    Classifica o corpo de um frame.

    Raises:
        JsonRpcError: PARSE_ERROR para JSON inválido, INVALID_REQUEST para
            um valor que não é uma mensagem
    """
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise JsonRpcError(ErrorCodes.PARSE_ERROR, f"Parse error: {e}") from e
    if not isinstance(data, dict):
        raise JsonRpcError(ErrorCodes.INVALID_REQUEST, "Invalid request: message must be an object")

    if "method" in data:
        method = data["method"]
        if not isinstance(method, str):
            raise JsonRpcError(ErrorCodes.INVALID_REQUEST, "Invalid request: method must be a string")
        if "id" in data:
            return Request(method, data.get("params"), data["id"])
        return Notification(method, data.get("params"))
    if "id" in data:
        return Response(data["id"], data.get("result"), data.get("error"))
    raise JsonRpcError(ErrorCodes.INVALID_REQUEST, "Invalid request: missing method or id")


# --- conexão ----------------------------------------------------------


class MessageHandler:
    """Ponto de entrada único para requests e notificações recebidos."""

    async def handle_request(self, method: str, params: Any) -> Any:
        raise JsonRpcError(ErrorCodes.METHOD_NOT_FOUND, f"Method not found: {method}")

    async def handle_notification(self, method: str, params: Any) -> None:
        logger.debug(f"Notificação ignorada: {method}")


class Connection:
    """
    Conexão JSON-RPC sobre um par de fluxos.

    Args:
        reader: Fluxo de entrada (StreamReader)
        writer: Fluxo de saída (write / drain / close)
        handler: Destino dos requests e notificações recebidos
    """

    def __init__(self, reader: asyncio.StreamReader, writer, handler: MessageHandler):
        self._reader = reader
        self._writer = writer
        self._handler = handler
        self._write_lock = asyncio.Lock()
        self._next_id = 0
        self._pending: dict[Union[int, str], asyncio.Future] = {}
        self._requests: dict[Union[int, str], asyncio.Task] = {}
        self._notifications: asyncio.Queue = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        """Inicia a tarefa leitora e o worker de notificações."""
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.create_task(self._read_loop())
        self._worker_task = asyncio.create_task(self._notification_loop())

    async def wait_closed(self) -> None:
        await self._closed.wait()

    # --- saída -------------------------------------------------------

    async def _send(self, payload: dict) -> None:
        await self._write_frame(encode_frame(payload))

    async def _write_frame(self, data: bytes) -> None:
        async with self._write_lock:
            if self._closed.is_set():
                raise ConnectionClosed()
            self._writer.write(data)
            await self._writer.drain()

    async def call(self, method: str, params: Any = None, timeout: Optional[float] = None) -> Any:
        """
        Envia um request e aguarda a resposta.

        Args:
            method: Nome do método
            params: Parâmetros (omitidos se None)
            timeout: Prazo em segundos (None = sem prazo)

        Raises:
            asyncio.TimeoutError: prazo expirado (a entrada pendente é removida)
            JsonRpcError: resposta de erro
            ConnectionClosed: conexão encerrada antes da resposta
        """
        if self._closed.is_set():
            raise ConnectionClosed()
        self._next_id += 1
        request_id = self._next_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        payload = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
        if params is not None:
            payload["params"] = params
        try:
            await self._send(payload)
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Any = None) -> None:
        payload = {"jsonrpc": JSONRPC_VERSION, "method": method}
        if params is not None:
            payload["params"] = params
        await self._send(payload)

    # --- entrada -----------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            while True:
                body = await read_frame(self._reader)
                if body is None:
                    logger.info("Fim do fluxo de entrada")
                    break
                try:
                    message = decode_message(body)
                except JsonRpcError as e:
                    logger.error(f"Mensagem inválida ignorada: {e.message}")
                    if e.code == ErrorCodes.INVALID_REQUEST:
                        await self._send_error(None, e)
                    continue
                self._dispatch(message)
        except FrameError as e:
            logger.error(f"Erro de framing, encerrando conexão: {e}")
        except (ConnectionError, OSError) as e:
            logger.error(f"Erro de E/S, encerrando conexão: {e}")
        finally:
            await self.close()

    def _dispatch(self, message: Message) -> None:
        if isinstance(message, Response):
            self._resolve(message)
        elif isinstance(message, Request):
            task = asyncio.create_task(self._run_request(message))
            self._requests[message.id] = task
            task.add_done_callback(lambda _t, rid=message.id: self._requests.pop(rid, None))
        else:
            self._notifications.put_nowait(message)

    def _resolve(self, response: Response) -> None:
        future = self._pending.pop(response.id, None)
        if future is None or future.done():
            logger.debug(f"Resposta sem chamada pendente descartada: id={response.id}")
            return
        if response.error is not None:
            error = response.error if isinstance(response.error, dict) else {"message": str(response.error)}
            future.set_exception(JsonRpcError.from_dict(error))
        else:
            future.set_result(response.result)

    async def _run_request(self, request: Request) -> None:
        try:
            result = await self._handler.handle_request(request.method, request.params)
            # falhas de serialização viram INTERNAL_ERROR abaixo
            data = encode_frame({"jsonrpc": JSONRPC_VERSION, "id": request.id, "result": result})
        except JsonRpcError as e:
            await self._send_error(request.id, e)
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Erro no handler de {request.method}: {e}", exc_info=True)
            await self._send_error(request.id, JsonRpcError(ErrorCodes.INTERNAL_ERROR, str(e)))
            return
        try:
            await self._write_frame(data)
        except ConnectionClosed:
            logger.debug(f"Resposta de {request.method} descartada: conexão encerrada")

    async def _send_error(self, request_id, error: JsonRpcError) -> None:
        payload = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_dict()}
        try:
            await self._send(payload)
        except ConnectionClosed:
            logger.debug(f"Erro para id={request_id} descartado: conexão encerrada")

    async def _notification_loop(self) -> None:
        while True:
            notification: Notification = await self._notifications.get()
            try:
                await self._handler.handle_notification(notification.method, notification.params)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Erro no handler de {notification.method}: {e}", exc_info=True)

    # --- encerramento ------------------------------------------------

    async def close(self) -> None:
        """Encerra a conexão e libera toda chamada pendente."""
        if self._closed.is_set():
            return
        self._closed.set()

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionClosed())
        self._pending.clear()

        current = asyncio.current_task()
        tasks = [self._reader_task, self._worker_task, *self._requests.values()]
        for task in tasks:
            if task is not None and task is not current and not task.done():
                task.cancel()

        try:
            self._writer.close()
        except (OSError, RuntimeError) as e:
            logger.debug(f"Erro ao fechar fluxo de saída: {e}")
        logger.info("Conexão encerrada")
