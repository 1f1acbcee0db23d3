"""
ast.py - Árvore sintática de expressões CEL

Propósito:
    Representar o resultado do parser CEL: nós imutáveis com identificador
    inteiro único por parse, faixas de offset (em runes) por nó e a tabela de
    chamadas de macro anteriores à expansão.

Componentes principais:
    - Expr e subclasses (Ident, Literal, Select, Call, ListExpr, MapExpr,
      StructExpr, Comprehension, Unspecified)
    - OffsetRange: faixa semiaberta [start, stop) em offsets de rune
    - SourceInfo: offsets por nó, parênteses de chamadas e macro_calls
    - ParsedAst / CheckedAst: árvore + informações de origem (+ tipos)

Notas de implementação:
    - Offsets são índices de `str` Python, ou seja, code points
    - Conjunto de tipos de nó é fechado (ExprKind); consumidores devem
      tratar todos os casos explicitamente
"""

from __future__ import annotations

import bisect
import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from cells_lsp.cel.types import CelType


class ExprKind(enum.Enum):
    """Conjunto fechado de tipos de nó."""

    IDENT = "ident"
    LITERAL = "literal"
    SELECT = "select"
    CALL = "call"
    LIST = "list"
    MAP = "map"
    STRUCT = "struct"
    COMPREHENSION = "comprehension"
    UNSPECIFIED = "unspecified"


@dataclass
class Expr:
    id: int

    kind = ExprKind.UNSPECIFIED


@dataclass
class Unspecified(Expr):
    kind = ExprKind.UNSPECIFIED


@dataclass
class Ident(Expr):
    name: str

    kind = ExprKind.IDENT


@dataclass
class Literal(Expr):
    """
    Constante literal.

    `type_name` é um de: null_type, bool, int, uint, double, string, bytes.
    """

    value: Any
    type_name: str

    kind = ExprKind.LITERAL


@dataclass
class Select(Expr):
    operand: Expr
    field: str
    test_only: bool = False

    kind = ExprKind.SELECT


@dataclass
class Call(Expr):
    function: str
    args: list[Expr]
    target: Optional[Expr] = None

    kind = ExprKind.CALL

    @property
    def is_member(self) -> bool:
        return self.target is not None


@dataclass
class ListExpr(Expr):
    elements: list[Expr]

    kind = ExprKind.LIST


@dataclass
class MapEntry:
    id: int
    key: Expr
    value: Expr


@dataclass
class MapExpr(Expr):
    entries: list[MapEntry]

    kind = ExprKind.MAP


@dataclass
class StructField:
    id: int
    name: str
    value: Expr


@dataclass
class StructExpr(Expr):
    type_name: str
    fields: list[StructField]

    kind = ExprKind.STRUCT


@dataclass
class Comprehension(Expr):
    iter_var: str
    iter_range: Expr
    accu_var: str
    accu_init: Expr
    loop_condition: Expr
    loop_step: Expr
    result: Expr

    kind = ExprKind.COMPREHENSION


@dataclass(frozen=True)
class OffsetRange:
    """Faixa semiaberta [start, stop) em offsets de rune."""

    start: int
    stop: int

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.stop

    @property
    def width(self) -> int:
        return self.stop - self.start


@dataclass
class SourceInfo:
    """
    Metadados de origem de um parse.

    Attributes:
        text: Texto analisado
        offsets: id do nó → faixa do token que identifica o nó (nome da
            função, operador, campo, literal; a expressão inteira para
            listas, mapas, structs e comprehensions)
        extents: id do nó → faixa da expressão completa (com operandos)
        parens: id da chamada nomeada → faixa "(" ... ")" dos argumentos
        macro_calls: id do nó expandido → chamada original da macro
    """

    text: str
    offsets: dict[int, OffsetRange] = field(default_factory=dict)
    extents: dict[int, OffsetRange] = field(default_factory=dict)
    parens: dict[int, OffsetRange] = field(default_factory=dict)
    macro_calls: dict[int, Call] = field(default_factory=dict)
    line_starts: list[int] = field(default_factory=list)

    def __post_init__(self):
        if not self.line_starts:
            starts = [0]
            for i, ch in enumerate(self.text):
                if ch == "\n":
                    starts.append(i + 1)
            self.line_starts = starts

    def offset_range(self, expr_id: int) -> Optional[OffsetRange]:
        return self.offsets.get(expr_id)

    def location(self, offset: int) -> tuple[int, int]:
        """Converte offset de rune em (linha 1-based, coluna 0-based)."""
        index = bisect.bisect_right(self.line_starts, offset) - 1
        return index + 1, offset - self.line_starts[index]

    def start_location(self, expr_id: int) -> Optional[tuple[int, int]]:
        r = self.offsets.get(expr_id)
        if r is None:
            return None
        return self.location(r.start)


@dataclass
class ParsedAst:
    expr: Expr
    source_info: SourceInfo

    @property
    def text(self) -> str:
        return self.source_info.text


@dataclass
class CheckedAst(ParsedAst):
    type_map: dict[int, CelType] = field(default_factory=dict)

    @property
    def output_type(self) -> CelType:
        return self.type_map[self.expr.id]


@dataclass(frozen=True)
class CelIssue:
    """Erro de parse ou de checagem: linha 1-based, coluna 0-based (runes)."""

    line: int
    column: int
    message: str

    def __str__(self) -> str:
        return f"ERROR: <input>:{self.line}:{self.column + 1}: {self.message}"


def children(expr: Expr) -> list[Expr]:
    """Subexpressões diretas de um nó, na ordem do texto."""
    if isinstance(expr, (Ident, Literal, Unspecified)):
        return []
    if isinstance(expr, Select):
        return [expr.operand]
    if isinstance(expr, Call):
        head = [expr.target] if expr.target is not None else []
        return head + list(expr.args)
    if isinstance(expr, ListExpr):
        return list(expr.elements)
    if isinstance(expr, MapExpr):
        out: list[Expr] = []
        for entry in expr.entries:
            out.extend((entry.key, entry.value))
        return out
    if isinstance(expr, StructExpr):
        return [f.value for f in expr.fields]
    if isinstance(expr, Comprehension):
        return [
            expr.iter_range,
            expr.accu_init,
            expr.loop_condition,
            expr.loop_step,
            expr.result,
        ]
    raise TypeError(f"Tipo de nó desconhecido: {type(expr).__name__}")
