"""
hover.py - Informação contextual ao passar o mouse (textDocument/hover)

Propósito:
    Exibir a documentação do elemento CEL sob o cursor.

Mapeamento de hover:
    true / false / null    → descrição do literal
    operadores (+, &&, ?)  → **Operator**: símbolo, descrição e overloads
    conversões (int, ...)  → **Type**: nome, descrição e overloads
    funções e métodos      → nome, descrição e overloads
    macros (map, has, ...) → **Macro**: nome, descrição e exemplos

Notas de implementação:
    - Cada elemento tem a faixa do seu token (nome da função, operador,
      literal); vence a menor faixa que contém o cursor
    - O índice `_[_]` não tem hover
    - Documento que não passa no parse ou posição fora do texto → None
"""

from __future__ import annotations

import logging
from typing import Optional

from lsprotocol.types import Hover, MarkupContent, MarkupKind, Position

from cells_lsp.cel import Environment
from cells_lsp.cel.ast import Call, Literal, ParsedAst
from cells_lsp.cel.declarations import Doc, is_type_conversion, operator_symbol
from cells_lsp.positions import INVALID, PositionIndex
from cells_lsp.syntax import ByteSpan, node_span, walk

logger = logging.getLogger(__name__)

_KEYWORDS = {
    "true": "`true` — boolean **true** literal",
    "false": "`false` — boolean **false** literal",
    "null": "`null` — **null** value\n\nRepresents the absence of a value. Type: `null_type`.",
}


def format_doc(doc: Doc, header_prefix: str = "", name_override: str = "") -> str:
    """
    Formata uma Doc em markdown.

    Args:
        doc: Documentação estruturada
        header_prefix: Prefixo do cabeçalho (ex.: "**Operator**: ")
        name_override: Substitui o nome exibido (ex.: símbolo do operador)
    """
    parts: list[str] = []
    name = doc.signature or name_override or doc.name
    if name:
        parts.append(f"{header_prefix}`{name}`")
    if doc.description:
        parts.append(doc.description)
    text = "\n\n".join(parts)

    if doc.children:
        if any(child.signature for child in doc.children):
            lines = ["**Overloads**:"]
            lines.extend(f"- `{child.signature}`" for child in doc.children if child.signature)
        else:
            lines = ["**Examples**:"]
            lines.extend(f"```cel\n{child.description}\n```" for child in doc.children if child.description)
        text += "\n\n" + "\n".join(lines)
    return text


def function_hover(name: str, env: Environment) -> str:
    """Markdown de uma função, operador ou conversão de tipo ("" se desconhecida)."""
    decl = env.functions().get(name)
    if decl is None:
        return ""
    doc = decl.documentation()
    symbol = operator_symbol(name)
    if symbol is not None:
        return format_doc(doc, "**Operator**: ", symbol)
    if is_type_conversion(name):
        return format_doc(doc, "**Type**: ")
    return format_doc(doc)


def macro_hover(name: str, env: Environment) -> str:
    macro = env.macro(name)
    if macro is None:
        return f"`{name}` — macro"
    return format_doc(macro.documentation(), "**Macro**: ")


def _collect(ast: ParsedAst, index: PositionIndex, env: Environment) -> list[tuple[ByteSpan, str]]:
    hovers: list[tuple[ByteSpan, str]] = []

    def add(node_id: int, markdown: str):
        span = node_span(ast, index, node_id)
        if span is not None and markdown:
            hovers.append((span, markdown))

    for visit in walk(ast):
        node = visit.node
        if isinstance(node, Literal):
            if node.type_name == "bool":
                add(node.id, _KEYWORDS["true" if node.value else "false"])
            elif node.type_name == "null_type":
                add(node.id, _KEYWORDS["null"])
        elif isinstance(node, Call) and node.function != "_[_]":
            add(node.id, function_hover(node.function, env))

    for record in ast.source_info.macro_calls.values():
        add(record.id, macro_hover(record.function, env))
    return hovers


def compute_hover(source: str, position: Position, env: Environment) -> Optional[Hover]:
    """
    Computa hover baseado na posição do cursor.

    Args:
        source: Texto-fonte do documento
        position: Posição do cursor (0-based, coluna UTF-16)
        env: Ambiente CEL

    Returns:
        Hover com MarkupContent ou None se nada encontrado
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

    best: Optional[tuple[ByteSpan, str]] = None
    for span, markdown in _collect(ast, index, env):
        if span.contains(offset) and (best is None or span.width <= best[0].width):
            best = (span, markdown)
    if best is None:
        return None

    span, markdown = best
    return Hover(
        contents=MarkupContent(kind=MarkupKind.Markdown, value=markdown),
        range=index.range_of_bytes(span.start, span.stop),
    )
