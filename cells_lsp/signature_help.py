"""
signature_help.py - Assinaturas de função durante a digitação (textDocument/signatureHelp)

Propósito:
    Mostrar os overloads da chamada cujos parênteses contêm o cursor,
    destacando o parâmetro ativo.

Notas de implementação:
    - A chamada escolhida é a mais interna (menor faixa "(" ... ")")
    - Parâmetro ativo = vírgulas no nível 0 entre "(" e o cursor,
      limitado ao número de argumentos da chamada
    - Assinaturas filtradas pelo tipo da chamada: métodos têm "." antes
      do "(" (ex.: `string.contains(string) -> bool`), funções globais não
    - Sem overloads compatíveis → rótulo genérico "function()"
    - Trigger characters: "(" e ","
"""

from __future__ import annotations

import logging
from typing import Optional

from lsprotocol.types import ParameterInformation, Position, SignatureHelp, SignatureInformation

from cells_lsp.cel import Environment
from cells_lsp.cel.ast import Call
from cells_lsp.cel.declarations import FunctionDecl
from cells_lsp.positions import INVALID, PositionIndex
from cells_lsp.syntax import ByteSpan, walk

logger = logging.getLogger(__name__)

TRIGGER_CHARACTERS = ["(", ","]

_OPENERS = "([{"
_CLOSERS = ")]}"


def compute_signature_help(source: str, position: Position, env: Environment) -> Optional[SignatureHelp]:
    """
    Computa a assinatura da chamada sob o cursor.

    Args:
        source: Texto do documento
        position: Posição do cursor
        env: Ambiente CEL

    Returns:
        SignatureHelp ou None (fora de chamada, função desconhecida, erro de parse)
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

    best: Optional[tuple[Call, ByteSpan]] = None
    for visit in walk(ast):
        node = visit.node
        if not isinstance(node, Call):
            continue
        parens = ast.source_info.parens.get(node.id)
        if parens is None:
            continue
        span = ByteSpan(index.rune_to_byte(parens.start), index.rune_to_byte(parens.stop))
        if span.contains(offset) and (best is None or span.width <= best[1].width):
            best = (node, span)
    if best is None:
        return None

    call, span = best
    decl = env.functions().get(call.function)
    if decl is None:
        return None

    data = source.encode("utf-8")
    active = active_parameter(data, span.start, offset, len(call.args))
    return SignatureHelp(
        signatures=generate_signatures(decl, call.is_member),
        active_signature=0,
        active_parameter=active,
    )


def active_parameter(data: bytes, paren_start: int, cursor: int, arg_count: int) -> int:
    """
    Índice do argumento sob o cursor.

    Args:
        data: Texto em UTF-8
        paren_start: Offset (bytes) do "(" da chamada
        cursor: Offset (bytes) do cursor
        arg_count: Número de argumentos da chamada
    """
    depth = 0
    commas = 0
    for i in range(paren_start + 1, min(cursor, len(data))):
        ch = chr(data[i])
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
        elif ch == "," and depth == 0:
            commas += 1
    if arg_count == 0:
        return 0
    return min(commas, arg_count - 1)


def signature_matches_call(signature: str, function: str, is_member: bool) -> bool:
    """Métodos têm ".<nome>(" na assinatura; funções globais não."""
    if f"{function}(" not in signature:
        return True
    return (f".{function}(" in signature) == is_member


def generate_signatures(decl: FunctionDecl, is_member: bool) -> list[SignatureInformation]:
    doc = decl.documentation()
    signatures = []
    for child in doc.children:
        if child.signature and signature_matches_call(child.signature, decl.name, is_member):
            signatures.append(
                SignatureInformation(
                    label=child.signature,
                    documentation=doc.description or None,
                    parameters=extract_parameters(child.signature, decl.name),
                )
            )
    if not signatures:
        return [SignatureInformation(label="function()")]
    return signatures


def extract_parameters(signature: str, function: str) -> Optional[list[ParameterInformation]]:
    """
    Extrai os parâmetros de uma assinatura `recv.fn(a, b) -> r`.

    Cada parâmetro é rotulado pela última palavra de sua declaração;
    tipos compostos (`list(int)`) são mantidos inteiros.
    """
    open_idx = _call_paren(signature, function)
    if open_idx < 0:
        return None
    depth = 0
    close_idx = -1
    for i in range(open_idx, len(signature)):
        if signature[i] == "(":
            depth += 1
        elif signature[i] == ")":
            depth -= 1
            if depth == 0:
                close_idx = i
                break
    if close_idx < 0:
        return None

    params: list[ParameterInformation] = []
    current: list[str] = []
    depth = 0
    for ch in signature[open_idx + 1:close_idx] + ",":
        if ch == "," and depth == 0:
            part = "".join(current).strip()
            if part:
                params.append(ParameterInformation(label=_param_name(part)))
            current = []
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        current.append(ch)
    return params or None


def _call_paren(signature: str, function: str) -> int:
    if signature.startswith(function + "("):
        return len(function)
    idx = signature.find(f".{function}(")
    if idx >= 0:
        return idx + len(function) + 1
    return signature.find("(")


def _param_name(declaration: str) -> str:
    if "(" in declaration:
        return declaration
    words = declaration.split()
    return words[-1] if words else declaration
