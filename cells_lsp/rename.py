"""
rename.py - Renomear identificadores respeitando o escopo

Propósito:
    Suporta textDocument/rename e textDocument/prepareRename para nomes
    livres (todas as ocorrências livres do documento) e variáveis de laço
    de macros (somente dentro da comprehension que as declara).

Notas de implementação:
    - prepareRename devolve a faixa do nome sob o cursor; nomes de função,
      macros e literais não são renomeáveis
    - O novo nome precisa ser um identificador válido e não reservado;
      caso contrário o request falha com INVALID_PARAMS
    - Uma variável de laço que sombreia um nome livre não é afetada pelo
      rename do nome livre, e vice-versa
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from lsprotocol.types import Position, Range, TextEdit, WorkspaceEdit

from cells_lsp.cel import Environment
from cells_lsp.jsonrpc import ErrorCodes, JsonRpcError
from cells_lsp.positions import INVALID, PositionIndex
from cells_lsp.references import locate_occurrences
from cells_lsp.syntax import identifier_at

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"[^\W\d]\w*")

RESERVED_WORDS = frozenset(
    {
        "true", "false", "null", "in", "as", "break", "const", "continue",
        "else", "for", "function", "if", "import", "let", "loop", "package",
        "namespace", "return", "var", "void", "while",
    }
)


def validate_new_name(new_name: str) -> None:
    """
    Valida o novo nome.

    Raises:
        JsonRpcError: INVALID_PARAMS se o nome for vazio, inválido ou reservado
    """
    if not new_name:
        raise JsonRpcError(ErrorCodes.INVALID_PARAMS, "new name cannot be empty")
    if not _IDENTIFIER.fullmatch(new_name) or not new_name.isascii():
        raise JsonRpcError(ErrorCodes.INVALID_PARAMS, f"'{new_name}' is not a valid identifier")
    if new_name in RESERVED_WORDS:
        raise JsonRpcError(ErrorCodes.INVALID_PARAMS, f"'{new_name}' is a reserved word")


def compute_rename(
    source: str, uri: str, position: Position, new_name: str, env: Environment
) -> Optional[WorkspaceEdit]:
    """
    Computa as edições de um rename.

    Args:
        source: Texto do documento
        uri: URI do documento
        position: Posição do cursor
        new_name: Novo nome
        env: Ambiente CEL

    Returns:
        WorkspaceEdit com um TextEdit por ocorrência, ou None se não houver
        nada renomeável sob o cursor

    Raises:
        JsonRpcError: novo nome inválido
    """
    validate_new_name(new_name)

    found = locate_occurrences(source, position, env)
    if found is None or not found.spans:
        return None

    edits = []
    for span in found.spans:
        r = found.index.range_of_bytes(span.start, span.stop)
        if r is not None:
            edits.append(TextEdit(range=r, new_text=new_name))
    logger.info(f"Rename '{found.target.name}' → '{new_name}': {len(edits)} edições em {uri}")
    return WorkspaceEdit(changes={uri: edits})


def compute_prepare_rename(source: str, position: Position, env: Environment) -> Optional[Range]:
    """
    Verifica se o símbolo na posição é renomeável.

    Returns:
        Range do nome se renomeável, None caso contrário
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

    target = identifier_at(ast, index, offset)
    if target is None or target.is_function:
        return None
    return index.range_of_bytes(target.span.start, target.span.stop)
