"""
semantic_tokens.py - Colorização semântica via árvore CEL

Propósito:
    Produzir tokens semânticos (textDocument/semanticTokens/full) que o
    editor exibirá com cores baseadas no papel real de cada elemento.

Mapeamento de tokens CEL → LSP:
    identificador livre                  → property
    variável de laço (uso e declaração)  → variable
    campo após "."                       → property
    operador (+, &&, !, ?, in)           → operator
    nome de macro (map, all, has, ...)   → macro
    conversão de tipo (int, string, ...) → type + defaultLibrary
    método (recv.fn)                     → method
    função global                        → function
    true / false / null                  → keyword
    string / bytes                       → string
    int / uint / double                  → number
    // comentário                        → comment

Notas de implementação:
    - Faixas vêm dos offsets registrados pelo parser; nós sintéticos da
      expansão de macros não têm faixa e não geram token
    - Tokens que atravessam linhas (strings com aspas triplas) são
      divididos em um token por linha
    - Documento vazio ou com erro de sintaxe → None (sem tokens)
    - Encoding delta: [deltaLine, deltaStartChar, length, tokenType, tokenModifiers]
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from lsprotocol.types import (
    SemanticTokenModifiers,
    SemanticTokens,
    SemanticTokensLegend,
    SemanticTokenTypes,
)

from cells_lsp.cel import Environment
from cells_lsp.cel.ast import Call, Ident, Literal, ParsedAst, Select
from cells_lsp.cel.declarations import is_macro, is_type_conversion, operator_symbol
from cells_lsp.positions import INVALID, PositionIndex
from cells_lsp.syntax import ByteSpan, binder_names, declaration_span, node_span, walk

logger = logging.getLogger(__name__)

# Ordem define o índice de cada tipo no encoding
TOKEN_TYPES: List[str] = [
    SemanticTokenTypes.Property.value,     # 0
    SemanticTokenTypes.Struct.value,       # 1
    SemanticTokenTypes.Variable.value,     # 2
    SemanticTokenTypes.Enum.value,         # 3
    SemanticTokenTypes.EnumMember.value,   # 4
    SemanticTokenTypes.Interface.value,    # 5
    SemanticTokenTypes.Method.value,       # 6
    SemanticTokenTypes.Function.value,     # 7
    SemanticTokenTypes.Decorator.value,    # 8
    SemanticTokenTypes.Macro.value,        # 9
    SemanticTokenTypes.Namespace.value,    # 10
    SemanticTokenTypes.Keyword.value,      # 11
    SemanticTokenTypes.Modifier.value,     # 12
    SemanticTokenTypes.Comment.value,      # 13
    SemanticTokenTypes.String.value,       # 14
    SemanticTokenTypes.Number.value,       # 15
    SemanticTokenTypes.Type.value,         # 16
    SemanticTokenTypes.Operator.value,     # 17
]

TOKEN_MODIFIERS: List[str] = [
    SemanticTokenModifiers.Deprecated.value,      # bit 0
    SemanticTokenModifiers.DefaultLibrary.value,  # bit 1
]


def build_legend() -> SemanticTokensLegend:
    """Cria uma instância fresca do legend para evitar mutações acidentais."""
    return SemanticTokensLegend(
        token_types=list(TOKEN_TYPES),
        token_modifiers=list(TOKEN_MODIFIERS),
    )


LEGEND = build_legend()

_TK_PROPERTY = 0
_TK_VARIABLE = 2
_TK_METHOD = 6
_TK_FUNCTION = 7
_TK_MACRO = 9
_TK_KEYWORD = 11
_TK_COMMENT = 13
_TK_STRING = 14
_TK_NUMBER = 15
_TK_TYPE = 16
_TK_OPERATOR = 17

_MOD_DEFAULT_LIBRARY = 1 << 1

_LITERAL_TOKENS = {
    "bool": _TK_KEYWORD,
    "null_type": _TK_KEYWORD,
    "string": _TK_STRING,
    "bytes": _TK_STRING,
    "int": _TK_NUMBER,
    "uint": _TK_NUMBER,
    "double": _TK_NUMBER,
}

# RawToken: (line_0based, col_utf16, length_utf16, token_type_index, modifier_bitmask)
RawToken = Tuple[int, int, int, int, int]

# (faixa em bytes, tipo, modificadores)
_Classified = Tuple[ByteSpan, int, int]


def compute_semantic_tokens(source: str, env: Environment) -> Optional[SemanticTokens]:
    """
    Computa tokens semânticos de um documento.

    Args:
        source: Texto do documento
        env: Ambiente CEL

    Returns:
        SemanticTokens, ou None para documento vazio, com erro de sintaxe
        ou sem nenhum token
    """
    if not source:
        return None
    ast, issues = env.parse(source)
    if ast is None:
        logger.debug(f"Semantic tokens: parse falhou ({len(issues)} issues)")
        return None

    index = PositionIndex(source)
    classified = classify(ast, index)
    for comment in env.comments(source):
        span = _bytes_of_runes(index, comment.start, comment.stop)
        if span is not None:
            classified.append((span, _TK_COMMENT, 0))

    tokens: List[RawToken] = []
    for span, token_type, modifiers in classified:
        tokens.extend(_split_lines(index, span, token_type, modifiers))

    data = _encode_deltas(tokens)
    if not data:
        return None
    return SemanticTokens(data=data)


def classify(ast: ParsedAst, index: PositionIndex) -> list[_Classified]:
    """Classifica cada nó da árvore que tem faixa própria no texto."""
    out: list[_Classified] = []

    def add(span: Optional[ByteSpan], token_type: int, modifiers: int = 0):
        if span is not None and span.width > 0:
            out.append((span, token_type, modifiers))

    macro_calls = ast.source_info.macro_calls
    for visit in walk(ast):
        node = visit.node
        if isinstance(node, Ident):
            token_type = _TK_VARIABLE if node.name in visit.binders else _TK_PROPERTY
            add(node_span(ast, index, node.id), token_type)
        elif isinstance(node, Select):
            # has(a.b) expandido: o campo vem do argumento original
            if not node.test_only or node.id not in macro_calls:
                add(node_span(ast, index, node.id), _TK_PROPERTY)
        elif isinstance(node, Literal):
            token_type = _LITERAL_TOKENS.get(node.type_name)
            if token_type is not None:
                add(node_span(ast, index, node.id), token_type)
        elif isinstance(node, Call):
            token_type, modifiers = _call_token(node)
            if token_type is not None:
                add(node_span(ast, index, node.id), token_type, modifiers)

        if binder_names(node):
            add(declaration_span(ast, index, node), _TK_VARIABLE)

        record = macro_calls.get(node.id)
        if record is not None:
            add(node_span(ast, index, record.id), _TK_MACRO)
            if record.function == "has" and record.args and isinstance(record.args[0], Select):
                add(node_span(ast, index, record.args[0].id), _TK_PROPERTY)
    return out


def _call_token(call: Call) -> tuple[Optional[int], int]:
    name = call.function
    if name == "_[_]":
        return None, 0
    if operator_symbol(name) is not None:
        return _TK_OPERATOR, 0
    if is_macro(name):
        return _TK_MACRO, 0
    if is_type_conversion(name):
        return _TK_TYPE, _MOD_DEFAULT_LIBRARY
    if call.is_member:
        return _TK_METHOD, 0
    return _TK_FUNCTION, 0


def _bytes_of_runes(index: PositionIndex, start: int, stop: int) -> Optional[ByteSpan]:
    begin = index.rune_to_byte(start)
    end = index.rune_to_byte(stop)
    if begin == INVALID or end == INVALID or end <= begin:
        return None
    return ByteSpan(begin, end)


def _split_lines(index: PositionIndex, span: ByteSpan, token_type: int, modifiers: int) -> List[RawToken]:
    """Um token por linha coberta pela faixa, com comprimentos em UTF-16."""
    start = index.line_column(span.start)
    stop = index.line_column(span.stop)
    if start is None or stop is None:
        return []
    (line, col), (end_line, end_col) = start, stop
    if line == end_line:
        return [(line, col, end_col - col, token_type, modifiers)] if end_col > col else []

    tokens: List[RawToken] = []
    first_len = index.line_end_column(line) - col
    if first_len > 0:
        tokens.append((line, col, first_len, token_type, modifiers))
    for middle in range(line + 1, end_line):
        length = index.line_end_column(middle)
        if length > 0:
            tokens.append((middle, 0, length, token_type, modifiers))
    if end_col > 0:
        tokens.append((end_line, 0, end_col, token_type, modifiers))
    return tokens


def _encode_deltas(tokens: List[RawToken]) -> List[int]:
    """
    Ordena tokens por posição e codifica em formato delta LSP.

    Formato: [deltaLine, deltaStartChar, length, tokenType, tokenModifiers]
    Cada token é relativo ao anterior; tokens repetidos na mesma posição
    são descartados.
    """
    if not tokens:
        return []

    tokens = sorted(tokens, key=lambda t: (t[0], t[1]))

    data: List[int] = []
    prev_line = 0
    prev_col = 0
    last: Optional[Tuple[int, int]] = None

    for line, col, length, token_type, modifiers in tokens:
        if (line, col) == last:
            continue
        delta_line = line - prev_line
        delta_col = col - prev_col if delta_line == 0 else col

        data.extend([delta_line, delta_col, length, token_type, modifiers])

        prev_line = line
        prev_col = col
        last = (line, col)

    return data
