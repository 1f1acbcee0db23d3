"""
completion.py - Autocompletar funções, macros e literais CEL (textDocument/completion)

Propósito:
    Sugerir funções globais, métodos, macros e palavras-chave, filtrados
    pelo contexto do cursor.

Contextos suportados:
    - Após "."         → métodos compatíveis com o tipo do receptor
    - Após operador    → funções, macros e literais compatíveis com o tipo
                         esperado do operando direito
    - Demais posições  → todas as funções globais, macros e literais

Notas de implementação:
    - O tipo do receptor é obtido compilando o texto antes do "."
    - O tipo esperado só restringe a lista quando os overloads do operador
      admitem um único tipo à direita
    - Itens ordenados por rótulo dentro de cada grupo; inserção como
      snippet `nome($1)`
"""

from __future__ import annotations

import logging
from typing import Optional

from lsprotocol.types import (
    CompletionItem,
    CompletionItemKind,
    CompletionList,
    InsertTextFormat,
    MarkupContent,
    MarkupKind,
    Position,
)

from cells_lsp.cel import Environment
from cells_lsp.cel import types as t
from cells_lsp.cel.declarations import BINARY_OPERATORS, OPERATORS, FunctionDecl, Overload
from cells_lsp.cel.types import CelType
from cells_lsp.positions import INVALID, PositionIndex

logger = logging.getLogger(__name__)

TRIGGER_CHARACTERS = ["."]

KEYWORDS = ("true", "false", "null")

_TRAILING_SPACE = " \t\r\n"


def compute_completion(source: Optional[str], position: Position, env: Environment) -> CompletionList:
    """
    Computa sugestões para a posição do cursor.

    Args:
        source: Texto do documento (None se o documento não estiver aberto)
        position: Posição do cursor
        env: Ambiente CEL

    Returns:
        CompletionList completa (is_incomplete=False)
    """
    before = _text_before(source, position) if source is not None else None

    if before is not None and before.endswith("."):
        receiver = receiver_type(before[:-1], env)
        return CompletionList(is_incomplete=False, items=member_items(env, receiver))

    expected = expected_type_after_operator(before, env) if before is not None else None
    items = global_items(env, expected) + macro_items(env) + keyword_items(env, expected)
    return CompletionList(is_incomplete=False, items=items)


def _text_before(source: str, position: Position) -> Optional[str]:
    index = PositionIndex(source)
    offset = index.offset_at(position)
    if offset == INVALID:
        return None
    return source.encode("utf-8")[:offset].decode("utf-8")


def receiver_type(text: str, env: Environment) -> Optional[CelType]:
    """Tipo da expressão antes do ".", ou None se não compilar."""
    text = text.rstrip(_TRAILING_SPACE)
    if not text:
        return None
    checked, _issues = env.compile(text)
    if checked is None:
        return None
    return checked.output_type


def _operator_symbols() -> list[tuple[str, str]]:
    pairs = [(OPERATORS[name], name) for name in BINARY_OPERATORS if OPERATORS.get(name)]
    # símbolos mais longos primeiro: "&&" antes de "&", ">=" antes de ">"
    return sorted(pairs, key=lambda p: (-len(p[0]), p[0]))


def expected_type_after_operator(before: str, env: Environment) -> Optional[CelType]:
    """
    Tipo esperado do operando direito quando o cursor segue um operador binário.

    Returns:
        O único tipo aceito à direita, ou None (sem operador, lado esquerdo
        inválido ou mais de um tipo possível)
    """
    text = before.rstrip(_TRAILING_SPACE)
    if not text:
        return None

    operator = None
    left = ""
    for symbol, name in _operator_symbols():
        if text.endswith(symbol):
            candidate = text[: -len(symbol)].rstrip(_TRAILING_SPACE)
            if not candidate:
                continue
            operator, left = name, candidate
            break
    if operator is None:
        return None

    checked, _issues = env.compile(left)
    if checked is None:
        return None
    left_type = checked.output_type

    decl = env.functions().get(operator)
    if decl is None:
        return None
    right_types: dict[str, CelType] = {}
    for overload in decl.overloads:
        if len(overload.args) != 2:
            continue
        first, right = overload.args
        if not (t.is_assignable(first, left_type) or t.is_assignable(left_type, first)):
            continue
        if right.is_type_param:
            right = left_type
        right_types[str(right)] = right
    if len(right_types) == 1:
        return next(iter(right_types.values()))
    return None


def type_matches(expected: Optional[CelType], result: CelType) -> bool:
    if expected is None:
        return True
    # parâmetros livres no resultado aceitam qualquer tipo
    return t.is_assignable(expected, t.substitute(result, {}))


def _is_operator_or_internal(name: str) -> bool:
    return name in OPERATORS or name.startswith("@") or name.startswith("_")


def _documentation(text: str) -> Optional[MarkupContent]:
    if not text:
        return None
    return MarkupContent(kind=MarkupKind.Markdown, value=text)


def _item(label: str, kind: CompletionItemKind, detail: str, documentation: str = "") -> CompletionItem:
    return CompletionItem(
        label=label,
        kind=kind,
        detail=detail,
        documentation=_documentation(documentation),
        insert_text=f"{label}($1)",
        insert_text_format=InsertTextFormat.Snippet,
    )


def member_items(env: Environment, receiver: Optional[CelType]) -> list[CompletionItem]:
    items = []
    for name, decl in env.functions().items():
        if _is_operator_or_internal(name):
            continue
        matching: list[Overload] = []
        for overload in decl.overloads:
            if not overload.member:
                continue
            if receiver is not None and overload.args and not t.is_assignable(overload.args[0], receiver):
                continue
            matching.append(overload)
        if not matching:
            continue
        items.append(_item(name, CompletionItemKind.Method, matching[0].signature(name), decl.description))
    return sorted(items, key=lambda i: i.label)


def _global_detail(decl: FunctionDecl) -> str:
    for overload in decl.overloads:
        if not overload.member:
            return overload.signature(decl.name)
    return ""


def global_items(env: Environment, expected: Optional[CelType]) -> list[CompletionItem]:
    items = []
    for name, decl in env.functions().items():
        if _is_operator_or_internal(name):
            continue
        if not any(not o.member and type_matches(expected, o.result) for o in decl.overloads):
            continue
        items.append(_item(name, CompletionItemKind.Function, _global_detail(decl), decl.description))
    return sorted(items, key=lambda i: i.label)


def macro_items(env: Environment) -> list[CompletionItem]:
    seen = set()
    items = []
    for macro in env.macros():
        if macro.name in seen:
            continue
        seen.add(macro.name)
        items.append(_item(macro.name, CompletionItemKind.Function, "macro"))
    return sorted(items, key=lambda i: i.label)


def keyword_items(env: Environment, expected: Optional[CelType]) -> list[CompletionItem]:
    items = []
    for keyword in KEYWORDS:
        checked, _issues = env.compile(keyword)
        if checked is None:
            continue
        keyword_type = checked.output_type
        if not type_matches(expected, keyword_type):
            continue
        items.append(CompletionItem(label=keyword, kind=CompletionItemKind.Keyword, detail=str(keyword_type)))
    return items
