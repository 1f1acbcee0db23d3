"""
documents.py - Armazenamento dos documentos abertos

Propósito:
    Fonte única do texto e da versão de cada documento aberto. Handlers
    leem snapshots imutáveis; apenas o caminho de despacho das
    notificações didOpen/didChange/didClose altera o store.

Componentes principais:
    - Document: snapshot imutável (uri, version, text)
    - DocumentStore: open / update / close / snapshot / uris
    - UnknownDocumentError: update de documento não aberto

Notas de implementação:
    - Um único threading.Lock protege todas as operações; nunca é mantido
      durante parse ou travessia da árvore
    - Sincronização de documento inteiro (sem patches incrementais)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    """Snapshot de um documento aberto."""

    uri: str
    version: int
    text: str


class UnknownDocumentError(KeyError):
    """Alteração de um documento que não foi aberto."""

    def __init__(self, uri: str):
        super().__init__(uri)
        self.uri = uri

    def __str__(self) -> str:
        return f"Documento não aberto: {self.uri}"


class DocumentStore:
    """Documentos abertos, indexados por URI."""

    def __init__(self):
        self._lock = threading.Lock()
        self._documents: dict[str, Document] = {}

    def open(self, uri: str, version: int, text: str) -> Document:
        document = Document(uri, version, text)
        with self._lock:
            self._documents[uri] = document
        logger.info(f"Documento aberto: {uri} (versão {version})")
        return document

    def update(self, uri: str, version: int, text: str) -> Document:
        """
        Substitui o texto de um documento aberto.

        Raises:
            UnknownDocumentError: se o documento não estiver aberto
        """
        document = Document(uri, version, text)
        with self._lock:
            current = self._documents.get(uri)
            if current is None:
                raise UnknownDocumentError(uri)
            self._documents[uri] = document
        if version < current.version:
            logger.warning(f"Versão regrediu para {uri}: {current.version} -> {version}")
        logger.debug(f"Documento alterado: {uri} (versão {version})")
        return document

    def close(self, uri: str) -> None:
        with self._lock:
            removed = self._documents.pop(uri, None)
        if removed is not None:
            logger.info(f"Documento fechado: {uri}")

    def snapshot(self, uri: str) -> Optional[Document]:
        with self._lock:
            return self._documents.get(uri)

    def uris(self) -> list[str]:
        with self._lock:
            return list(self._documents)

    def __contains__(self, uri: str) -> bool:
        with self._lock:
            return uri in self._documents

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)
