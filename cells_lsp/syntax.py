"""
syntax.py - Travessia da árvore CEL e resolução de escopo

Propósito:
    Travessia genérica única usada por hover, rename, references,
    highlight, semantic tokens e signature help. Localiza o nó mais
    justo que contém um offset, classifica o escopo de um identificador
    (topo ou variável de laço de uma comprehension) e enumera as
    ocorrências de um nome dentro de um escopo.

Componentes principais:
    - walk: gera Visit(node, binders) para cada nó
    - smallest_enclosing: nó de menor faixa que contém um offset
    - resolve_scope: TopLevel ou LoopVariable(comprehension_id, macro_name)
    - occurrences: faixas (em bytes) de todas as ocorrências de um nome
    - identifier_at: identificador sob o cursor (uso ou declaração)
    - identifier_near: identifier_at com recuperação pela palavra do texto

Notas de implementação:
    - `binders` mapeia cada variável de laço visível ao nó que a declara:
      a Comprehension (forma expandida) ou a Call da macro (forma não
      expandida). O declarante mais interno prevalece
    - Na forma expandida, o escopo da variável cobre loop_condition,
      loop_step e result; iter_range e accu_init ficam fora
    - Na forma de chamada, os argumentos após o declarante ficam no
      escopo; o alvo e o próprio declarante não
    - O local da declaração vem do primeiro argumento registrado em
      macro_calls; sem faixa, usa a primeira ocorrência textual do nome
      (com fronteira de palavra) após o fim de iter_range. É uma
      aproximação: pode errar se o nome aparecer dentro de um literal
      string no meio do caminho
    - A travessia não guarda estado entre chamadas
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Union

from cells_lsp.cel.ast import Call, Comprehension, Expr, Ident, ParsedAst, children
from cells_lsp.cel.declarations import MACRO_NAMES, NOT_STRICTLY_FALSE, OPERATORS
from cells_lsp.positions import INVALID, PositionIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ByteSpan:
    """Faixa semiaberta [start, stop) em offsets de bytes UTF-8."""

    start: int
    stop: int

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.stop

    @property
    def width(self) -> int:
        return self.stop - self.start


@dataclass(frozen=True)
class TopLevel:
    """O nome é livre: a árvore inteira é o espaço de busca."""


@dataclass(frozen=True)
class LoopVariable:
    """O nome é a variável de laço declarada pelo nó `comprehension_id`."""

    comprehension_id: int
    macro_name: str


Scope = Union[TopLevel, LoopVariable]


@dataclass(frozen=True)
class Visit:
    node: Expr
    binders: dict[str, Expr]


@dataclass(frozen=True)
class IdentifierTarget:
    """
    Identificador sob o cursor.

    Attributes:
        name: Nome do identificador
        node_id: Nó que o representa (Ident, ou o declarante para a
            declaração de uma variável de laço, ou a Call para funções)
        span: Faixa em bytes do nome
        scope: Escopo resolvido
        is_function: True se o cursor está no nome de uma função
    """

    name: str
    node_id: int
    span: ByteSpan
    scope: Scope
    is_function: bool = False


# --- travessia ---------------------------------------------------------


def call_binder(node: Expr) -> Optional[str]:
    """Nome da variável de laço de uma macro ainda em forma de chamada."""
    if (
        isinstance(node, Call)
        and node.target is not None
        and node.function in MACRO_NAMES
        and len(node.args) >= 2
        and isinstance(node.args[0], Ident)
    ):
        return node.args[0].name
    return None


def binder_names(node: Expr) -> list[str]:
    if isinstance(node, Comprehension):
        return [node.iter_var]
    name = call_binder(node)
    return [name] if name is not None else []


def walk(ast: ParsedAst, root: Optional[Expr] = None) -> Iterator[Visit]:
    """
    Percorre a árvore em pré-ordem.

    Args:
        ast: Árvore analisada
        root: Subárvore inicial (padrão: a expressão inteira)

    Raises:
        TypeError: tipo de nó desconhecido
    """
    stack: list[tuple[Expr, dict[str, Expr]]] = [(root if root is not None else ast.expr, {})]
    while stack:
        node, binders = stack.pop()
        yield Visit(node, binders)
        for child, child_binders in reversed(_scoped_children(node, binders)):
            stack.append((child, child_binders))


def _scoped_children(node: Expr, binders: dict[str, Expr]) -> list[tuple[Expr, dict[str, Expr]]]:
    if isinstance(node, Comprehension):
        inner = dict(binders)
        for name in binder_names(node):
            inner[name] = node
        return [
            (node.iter_range, binders),
            (node.accu_init, binders),
            (node.loop_condition, inner),
            (node.loop_step, inner),
            (node.result, inner),
        ]
    name = call_binder(node)
    if name is not None:
        inner = dict(binders)
        inner[name] = node
        # o declarante (args[0]) não é uma referência
        return [(node.target, binders)] + [(arg, inner) for arg in node.args[1:]]
    return [(child, binders) for child in children(node)]


def find_node(ast: ParsedAst, node_id: int) -> Optional[Visit]:
    for visit in walk(ast):
        if visit.node.id == node_id:
            return visit
    return None


# --- faixas -----------------------------------------------------------


def node_span(ast: ParsedAst, index: PositionIndex, node_id: int) -> Optional[ByteSpan]:
    """Faixa em bytes do token que identifica o nó, se houver."""
    r = ast.source_info.offset_range(node_id)
    if r is None:
        return None
    start = index.rune_to_byte(r.start)
    stop = index.rune_to_byte(r.stop)
    if start == INVALID or stop == INVALID or stop <= start:
        return None
    return ByteSpan(start, stop)


def extent_span(ast: ParsedAst, index: PositionIndex, node_id: int) -> Optional[ByteSpan]:
    """Faixa em bytes da expressão completa do nó."""
    r = ast.source_info.extents.get(node_id)
    if r is None:
        return None
    start = index.rune_to_byte(r.start)
    stop = index.rune_to_byte(r.stop)
    if start == INVALID or stop == INVALID:
        return None
    return ByteSpan(start, stop)


def smallest_enclosing(
    ast: ParsedAst,
    index: PositionIndex,
    byte_offset: int,
    accept: Optional[Callable[[Visit], bool]] = None,
) -> Optional[Visit]:
    """
    Nó de menor faixa que contém `byte_offset`.

    Empates ficam com o último nó visitado.

    Args:
        accept: Filtro opcional de candidatos
    """
    best: Optional[Visit] = None
    best_width = -1
    for visit in walk(ast):
        span = node_span(ast, index, visit.node.id)
        if span is None or not span.contains(byte_offset):
            continue
        if accept is not None and not accept(visit):
            continue
        if best is None or span.width <= best_width:
            best = visit
            best_width = span.width
    return best


# --- escopo -----------------------------------------------------------


def macro_name_of(ast: ParsedAst, binder: Expr) -> str:
    if isinstance(binder, Call):
        return binder.function
    record = ast.source_info.macro_calls.get(binder.id)
    return record.function if record is not None else ""


def _scope_of(ast: ParsedAst, binder: Optional[Expr]) -> Scope:
    if binder is None:
        return TopLevel()
    return LoopVariable(binder.id, macro_name_of(ast, binder))


def resolve_scope(ast: ParsedAst, node_id: int, name: str) -> Scope:
    """
    Escopo do identificador `name` representado pelo nó `node_id`.

    Se `node_id` é o próprio declarante de `name`, o escopo é o dele.
    """
    visit = find_node(ast, node_id)
    if visit is None:
        return TopLevel()
    if name in binder_names(visit.node):
        return _scope_of(ast, visit.node)
    return _scope_of(ast, visit.binders.get(name))


def declaration_span(ast: ParsedAst, index: PositionIndex, binder: Expr) -> Optional[ByteSpan]:
    """Local da declaração da variável de laço de `binder`."""
    if isinstance(binder, Call):
        return node_span(ast, index, binder.args[0].id)
    if not isinstance(binder, Comprehension):
        return None
    record = ast.source_info.macro_calls.get(binder.id)
    if record is not None and record.args and isinstance(record.args[0], Ident):
        span = node_span(ast, index, record.args[0].id)
        if span is not None:
            return span
    return _textual_declaration(ast, index, binder)


def _textual_declaration(ast: ParsedAst, index: PositionIndex, comp: Comprehension) -> Optional[ByteSpan]:
    r = ast.source_info.extents.get(comp.iter_range.id) or ast.source_info.offset_range(comp.iter_range.id)
    if r is None:
        return None
    pattern = re.compile(r"(?<!\w)" + re.escape(comp.iter_var) + r"(?!\w)")
    m = pattern.search(ast.text, r.stop)
    if m is None:
        return None
    logger.debug(f"Declaração de '{comp.iter_var}' localizada pelo texto em {m.start()}")
    return ByteSpan(index.rune_to_byte(m.start()), index.rune_to_byte(m.end()))


def occurrences(ast: ParsedAst, index: PositionIndex, scope: Scope, name: str) -> list[ByteSpan]:
    """
    Todas as ocorrências de `name` dentro de `scope`, ordenadas por offset.

    Para uma variável de laço, inclui o local da declaração.
    """
    spans: set[ByteSpan] = set()
    if isinstance(scope, LoopVariable):
        found = find_node(ast, scope.comprehension_id)
        if found is None:
            return []
        binder = found.node
        declaration = declaration_span(ast, index, binder)
        if declaration is not None:
            spans.add(declaration)
        for visit in walk(ast, root=binder):
            node = visit.node
            if isinstance(node, Ident) and node.name == name and visit.binders.get(name) is binder:
                span = node_span(ast, index, node.id)
                if span is not None:
                    spans.add(span)
    else:
        for visit in walk(ast):
            node = visit.node
            if isinstance(node, Ident) and node.name == name and name not in visit.binders:
                span = node_span(ast, index, node.id)
                if span is not None:
                    spans.add(span)
    return sorted(spans, key=lambda s: s.start)


def _is_named_call(node: Expr) -> bool:
    return isinstance(node, Call) and node.function not in OPERATORS and node.function != NOT_STRICTLY_FALSE


def identifier_at(ast: ParsedAst, index: PositionIndex, byte_offset: int) -> Optional[IdentifierTarget]:
    """
    Identificador sob o cursor: referência, declaração de variável de laço
    ou nome de função (incluindo macros).
    """
    macro_calls = ast.source_info.macro_calls
    candidates: list[IdentifierTarget] = []

    def consider(target: Optional[IdentifierTarget]):
        if target is not None and target.span.contains(byte_offset):
            candidates.append(target)

    for visit in walk(ast):
        node = visit.node
        if isinstance(node, Ident):
            span = node_span(ast, index, node.id)
            if span is not None:
                scope = _scope_of(ast, visit.binders.get(node.name))
                consider(IdentifierTarget(node.name, node.id, span, scope))
        elif _is_named_call(node):
            span = node_span(ast, index, node.id)
            if span is not None:
                consider(IdentifierTarget(node.function, node.id, span, TopLevel(), is_function=True))

        record = macro_calls.get(node.id)
        if record is not None:
            span = node_span(ast, index, record.id)
            if span is not None:
                consider(IdentifierTarget(record.function, node.id, span, TopLevel(), is_function=True))

        names = binder_names(node)
        if names:
            span = declaration_span(ast, index, node)
            if span is not None:
                consider(IdentifierTarget(names[0], node.id, span, _scope_of(ast, node)))

    if not candidates:
        return None
    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.span.width <= best.span.width:
            best = candidate
    return best


_WORD_CHAR = re.compile(r"\w")


def identifier_near(ast: ParsedAst, index: PositionIndex, byte_offset: int) -> Optional[IdentifierTarget]:
    """
    Identificador sob o cursor, com recuperação pela palavra do texto.

    Quando nenhum nó cobre o cursor, extrai a palavra em volta do offset e
    usa a referência com esse nome mais próxima do cursor.
    """
    target = identifier_at(ast, index, byte_offset)
    if target is not None:
        return target

    rune = index.byte_to_rune(byte_offset)
    if rune == INVALID:
        return None
    text = ast.text
    start = rune
    while start > 0 and _WORD_CHAR.match(text[start - 1]):
        start -= 1
    stop = rune
    while stop < len(text) and _WORD_CHAR.match(text[stop]):
        stop += 1
    if start == stop:
        return None
    word = text[start:stop]

    best: Optional[IdentifierTarget] = None
    best_distance = -1
    for visit in walk(ast):
        node = visit.node
        if not isinstance(node, Ident) or node.name != word:
            continue
        span = node_span(ast, index, node.id)
        if span is None:
            continue
        distance = abs(span.start - byte_offset)
        if best is None or distance < best_distance:
            scope = _scope_of(ast, visit.binders.get(node.name))
            best = IdentifierTarget(node.name, node.id, span, scope)
            best_distance = distance
    if best is not None:
        logger.debug(f"Identificador '{word}' recuperado pela palavra sob o cursor")
    return best
