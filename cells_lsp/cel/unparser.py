"""
unparser.py - Reconstrução de texto canônico a partir da árvore CEL

Propósito:
    Gerar o texto de uma ParsedAst com espaçamento e parênteses mínimos,
    restaurando a forma original das macros a partir de macro_calls.
    Usado pela formatação de documentos.

Notas de implementação:
    - Precedência: ?: (8), || (7), && (6), relações (5), + - (4),
      * / % (3), unários (2), membros/índices (1)
    - Operadores binários associam à esquerda; o lado direito com a mesma
      precedência recebe parênteses
"""

from __future__ import annotations

import json
import math

from cells_lsp.cel.ast import (
    Call,
    Comprehension,
    Expr,
    Ident,
    ListExpr,
    Literal,
    MapExpr,
    ParsedAst,
    Select,
    StructExpr,
    Unspecified,
)
from cells_lsp.cel.declarations import BINARY_OPERATORS, OPERATORS


class UnparseError(Exception):
    """A árvore não pode ser convertida em texto."""


_PRECEDENCE = {
    "_?_:_": 8,
    "_||_": 7,
    "_&&_": 6,
    "_==_": 5,
    "_!=_": 5,
    "_<_": 5,
    "_<=_": 5,
    "_>_": 5,
    "_>=_": 5,
    "@in": 5,
    "_+_": 4,
    "_-_": 4,
    "_*_": 3,
    "_/_": 3,
    "_%_": 3,
    "!_": 2,
    "-_": 2,
}


def unparse(ast: ParsedAst) -> str:
    """
    Converte uma árvore em texto canônico.

    Raises:
        UnparseError: comprehension sem registro da macro de origem
    """
    return _Unparser(ast).render(ast.expr)


class _Unparser:
    def __init__(self, ast: ParsedAst):
        self._macro_calls = ast.source_info.macro_calls

    def _precedence(self, expr: Expr) -> int:
        if expr.id in self._macro_calls:
            return 1
        if isinstance(expr, Call) and expr.target is None and expr.function in _PRECEDENCE:
            return _PRECEDENCE[expr.function]
        if isinstance(expr, Literal) and expr.type_name in ("int", "double") and _is_negative(expr.value):
            return 2
        return 1

    def _wrap(self, expr: Expr, condition: bool) -> str:
        text = self.render(expr)
        return f"({text})" if condition else text

    def render(self, expr: Expr) -> str:
        record = self._macro_calls.get(expr.id)
        if record is not None:
            return self._call(record)
        if isinstance(expr, Literal):
            return _literal(expr)
        if isinstance(expr, Ident):
            return expr.name
        if isinstance(expr, Select):
            if expr.test_only:
                return f"has({self._member_target(expr.operand)}.{expr.field})"
            return f"{self._member_target(expr.operand)}.{expr.field}"
        if isinstance(expr, Call):
            return self._call(expr)
        if isinstance(expr, ListExpr):
            return "[" + ", ".join(self.render(e) for e in expr.elements) + "]"
        if isinstance(expr, MapExpr):
            entries = (f"{self.render(e.key)}: {self.render(e.value)}" for e in expr.entries)
            return "{" + ", ".join(entries) + "}"
        if isinstance(expr, StructExpr):
            fields = (f"{f.name}: {self.render(f.value)}" for f in expr.fields)
            return f"{expr.type_name}{{" + ", ".join(fields) + "}"
        if isinstance(expr, Comprehension):
            raise UnparseError("comprehension sem chamada de macro registrada")
        if isinstance(expr, Unspecified):
            raise UnparseError("expressão não especificada")
        raise TypeError(f"Tipo de nó desconhecido: {type(expr).__name__}")

    def _member_target(self, target: Expr) -> str:
        return self._wrap(target, self._precedence(target) > 1)

    def _call(self, expr: Call) -> str:
        fn = expr.function
        args = expr.args
        if expr.target is None and fn in BINARY_OPERATORS:
            prec = _PRECEDENCE[fn]
            left = self._wrap(args[0], self._precedence(args[0]) > prec)
            right = self._wrap(args[1], self._precedence(args[1]) >= prec)
            return f"{left} {OPERATORS[fn]} {right}"
        if expr.target is None and fn in ("!_", "-_"):
            # "--1" seria lido como o literal 1
            operand = self._wrap(args[0], self._precedence(args[0]) > 2 or _is_number_literal(args[0]))
            return f"{OPERATORS[fn]}{operand}"
        if expr.target is None and fn == "_?_:_":
            cond = self._wrap(args[0], self._precedence(args[0]) >= 8)
            return f"{cond} ? {self.render(args[1])} : {self.render(args[2])}"
        if expr.target is None and fn == "_[_]":
            return f"{self._member_target(args[0])}[{self.render(args[1])}]"
        rendered = ", ".join(self.render(a) for a in args)
        if expr.target is not None:
            return f"{self._member_target(expr.target)}.{fn}({rendered})"
        return f"{fn}({rendered})"


def _is_negative(value) -> bool:
    return value < 0 or (isinstance(value, float) and math.copysign(1.0, value) < 0)


def _literal(expr: Literal) -> str:
    value = expr.value
    if expr.type_name == "null_type":
        return "null"
    if expr.type_name == "bool":
        return "true" if value else "false"
    if expr.type_name == "int":
        return str(value)
    if expr.type_name == "uint":
        return f"{value}u"
    if expr.type_name == "double":
        if math.isinf(value) or math.isnan(value):
            raise UnparseError(f"literal double sem representação: {value}")
        return repr(value)
    if expr.type_name == "string":
        return json.dumps(value, ensure_ascii=False)
    if expr.type_name == "bytes":
        return 'b"' + "".join(_byte_escape(b) for b in value) + '"'
    raise UnparseError(f"literal desconhecido: {expr.type_name}")


def _byte_escape(b: int) -> str:
    if b == 0x22:
        return '\\"'
    if b == 0x5C:
        return "\\\\"
    if 0x20 <= b < 0x7F:
        return chr(b)
    return f"\\x{b:02x}"


def _is_number_literal(expr: Expr) -> bool:
    return isinstance(expr, Literal) and expr.type_name in ("int", "double")
