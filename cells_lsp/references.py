"""
references.py - Referências de um identificador (textDocument/references)

Propósito:
    Listar todas as ocorrências do identificador sob o cursor dentro do
    seu escopo: o documento inteiro para nomes livres, a comprehension
    para variáveis de laço.

Notas de implementação:
    - Nomes de função e de macro não têm referências (None)
    - Sem nó sob o cursor, recupera o identificador pela palavra do texto
    - locate_occurrences é compartilhado com highlight e rename
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from lsprotocol.types import Location, Position

from cells_lsp.cel import Environment
from cells_lsp.positions import INVALID, PositionIndex
from cells_lsp.syntax import ByteSpan, IdentifierTarget, identifier_near, occurrences

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SymbolOccurrences:
    index: PositionIndex
    target: IdentifierTarget
    spans: list[ByteSpan]


def locate_occurrences(source: str, position: Position, env: Environment) -> Optional[SymbolOccurrences]:
    """
    Resolve o identificador sob o cursor e enumera suas ocorrências.

    Returns:
        SymbolOccurrences, ou None (documento vazio, erro de parse, cursor
        fora do texto, nada sob o cursor ou nome de função)
    """
    if not source:
        return None
    index = PositionIndex(source)
    offset = index.offset_at(position)
    if offset == INVALID or offset >= index.byte_length:
        return None

    ast, _issues = env.parse(source)
    if ast is None:
        return None

    target = identifier_near(ast, index, offset)
    if target is None or target.is_function:
        return None

    spans = occurrences(ast, index, target.scope, target.name)
    logger.debug(f"'{target.name}' ({type(target.scope).__name__}): {len(spans)} ocorrências")
    return SymbolOccurrences(index, target, spans)


def compute_references(source: str, uri: str, position: Position, env: Environment) -> Optional[list[Location]]:
    """
    Computa as referências do identificador sob o cursor.

    Args:
        source: Texto do documento
        uri: URI do documento (todas as localizações são nele)
        position: Posição do cursor
        env: Ambiente CEL

    Returns:
        Lista de Location ordenada por posição, ou None
    """
    found = locate_occurrences(source, position, env)
    if found is None:
        return None
    locations = []
    for span in found.spans:
        r = found.index.range_of_bytes(span.start, span.stop)
        if r is not None:
            locations.append(Location(uri=uri, range=r))
    return locations
