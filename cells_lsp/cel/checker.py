"""
checker.py - Checagem de tipos de expressões CEL

Propósito:
    Inferir o tipo de cada nó de uma ParsedAst e reportar referências não
    declaradas, overloads inexistentes e seleções de campo inválidas.

Notas de implementação:
    - Erros não interrompem a checagem; o nó problemático recebe o tipo
      `error`, que é compatível com tudo para evitar erros em cascata
    - A posição de um erro em chamada nomeada é o "(" da chamada; em
      operadores é o próprio operador
    - Issues são ordenadas por posição
"""

from __future__ import annotations

import logging
from typing import Optional

from cells_lsp.cel import types as t
from cells_lsp.cel.ast import (
    Call,
    CelIssue,
    CheckedAst,
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
from cells_lsp.cel.declarations import TYPE_IDENTIFIERS, FunctionDecl
from cells_lsp.cel.types import CelType

logger = logging.getLogger(__name__)

_LITERAL_TYPES = {
    "null_type": t.NULL,
    "bool": t.BOOL,
    "int": t.INT,
    "uint": t.UINT,
    "double": t.DOUBLE,
    "string": t.STRING,
    "bytes": t.BYTES,
}

_LOGICAL = {"_&&_", "_||_"}


class Checker:
    """
    Checador de tipos para uma única ParsedAst.

    Args:
        functions: Declarações de funções disponíveis
        variables: Variáveis declaradas no ambiente (nome → tipo)
    """

    def __init__(self, functions: dict[str, FunctionDecl], variables: Optional[dict[str, CelType]] = None):
        self._functions = functions
        self._variables = dict(variables or {})
        self._type_map: dict[int, CelType] = {}
        self._errors: list[tuple[int, int, str]] = []
        self._ast: Optional[ParsedAst] = None

    def check(self, ast: ParsedAst) -> tuple[Optional[CheckedAst], list[CelIssue]]:
        self._ast = ast
        self._type_map = {}
        self._errors = []
        self._visit(ast.expr, [])

        if self._errors:
            self._errors.sort(key=lambda e: (e[0], e[1]))
            info = ast.source_info
            issues = []
            for offset, _seq, message in self._errors:
                line, column = info.location(offset)
                issues.append(CelIssue(line, column, message))
            return None, issues
        return CheckedAst(ast.expr, ast.source_info, dict(self._type_map)), []

    # --- utilitários -------------------------------------------------

    def _error(self, expr: Expr, message: str, offset: Optional[int] = None) -> None:
        if offset is None:
            r = self._ast.source_info.offset_range(expr.id)
            offset = r.start if r is not None else 0
        self._errors.append((offset, len(self._errors), message))

    def _set(self, expr: Expr, typ: CelType) -> CelType:
        self._type_map[expr.id] = typ
        return typ

    @staticmethod
    def _lookup(scopes: list[dict[str, CelType]], name: str) -> Optional[CelType]:
        for scope in reversed(scopes):
            if name in scope:
                return scope[name]
        return None

    # --- visita ------------------------------------------------------

    def _visit(self, expr: Expr, scopes: list[dict[str, CelType]]) -> CelType:
        if isinstance(expr, Literal):
            return self._set(expr, _LITERAL_TYPES[expr.type_name])
        if isinstance(expr, Ident):
            return self._set(expr, self._ident(expr, scopes))
        if isinstance(expr, Select):
            return self._set(expr, self._select(expr, scopes))
        if isinstance(expr, Call):
            return self._set(expr, self._call(expr, scopes))
        if isinstance(expr, ListExpr):
            elems = [self._visit(e, scopes) for e in expr.elements]
            return self._set(expr, t.list_of(t.join(elems)))
        if isinstance(expr, MapExpr):
            keys = []
            values = []
            for entry in expr.entries:
                keys.append(self._visit(entry.key, scopes))
                values.append(self._visit(entry.value, scopes))
            return self._set(expr, t.map_of(t.join(keys), t.join(values)))
        if isinstance(expr, StructExpr):
            for f in expr.fields:
                self._visit(f.value, scopes)
            self._error(expr, f"undeclared reference to '{expr.type_name}' (in container '')")
            return self._set(expr, t.ERROR)
        if isinstance(expr, Comprehension):
            return self._set(expr, self._comprehension(expr, scopes))
        if isinstance(expr, Unspecified):
            return self._set(expr, t.DYN)
        raise TypeError(f"Tipo de nó desconhecido: {type(expr).__name__}")

    def _ident(self, expr: Ident, scopes) -> CelType:
        found = self._lookup(scopes, expr.name)
        if found is not None:
            return found
        if expr.name in self._variables:
            return self._variables[expr.name]
        if expr.name in TYPE_IDENTIFIERS:
            return TYPE_IDENTIFIERS[expr.name]
        self._error(expr, f"undeclared reference to '{expr.name}' (in container '')")
        return t.ERROR

    def _select(self, expr: Select, scopes) -> CelType:
        operand = self._visit(expr.operand, scopes)
        if operand.kind == "map":
            result = operand.params[1]
        elif operand.is_dyn_or_error or operand.kind == "message":
            result = t.DYN if operand.kind != "error" else t.ERROR
        else:
            self._error(expr, f"type '{operand}' does not support field selection")
            return t.ERROR
        return t.BOOL if expr.test_only else result

    def _comprehension(self, expr: Comprehension, scopes) -> CelType:
        range_type = self._visit(expr.iter_range, scopes)
        if range_type.kind == "list":
            var_type = range_type.params[0]
        elif range_type.kind == "map":
            var_type = range_type.params[0]
        elif range_type.is_dyn_or_error:
            var_type = t.DYN
        else:
            self._error(expr.iter_range, f"expression of type '{range_type}' cannot be range of a comprehension "
                                         "(must be list, map, or dynamic)")
            var_type = t.DYN

        accu_type = self._visit(expr.accu_init, scopes)
        inner = scopes + [{expr.accu_var: accu_type, expr.iter_var: var_type}]
        self._visit(expr.loop_condition, inner)
        step = self._visit(expr.loop_step, inner)
        if accu_type.kind == "list" and accu_type.params[0].kind == "dyn" and step.kind == "list":
            # lista vazia inicial recebe o tipo dos elementos do passo
            accu_type = step
            inner[-1][expr.accu_var] = step
        return self._visit(expr.result, inner)

    def _call(self, expr: Call, scopes) -> CelType:
        arg_types = []
        if expr.target is not None:
            arg_types.append(self._visit(expr.target, scopes))
        arg_types.extend(self._visit(a, scopes) for a in expr.args)

        decl = self._functions.get(expr.function)
        if decl is None:
            self._error(expr, f"undeclared reference to '{expr.function}' (in container '')",
                        self._call_offset(expr))
            return t.ERROR

        if expr.function in _LOGICAL:
            for arg, arg_type in zip(expr.args, arg_types):
                if not t.is_assignable(t.BOOL, arg_type):
                    self._error(arg, f"expected type 'bool' but found '{arg_type}'")
            return t.BOOL

        for overload in decl.overloads:
            if overload.member != expr.is_member or len(overload.args) != len(arg_types):
                continue
            bindings: dict[str, CelType] = {}
            if all(t.unify(p, a, bindings) for p, a in zip(overload.args, arg_types)):
                return t.substitute(overload.result, bindings)

        if any(a.kind == "error" for a in arg_types):
            return t.ERROR
        rendered = ", ".join(str(a) for a in arg_types)
        self._error(
            expr,
            f"found no matching overload for '{expr.function}' applied to '({rendered})'",
            self._call_offset(expr),
        )
        return t.ERROR

    def _call_offset(self, expr: Call) -> int:
        info = self._ast.source_info
        parens = info.parens.get(expr.id)
        if parens is not None:
            return parens.start
        r = info.offset_range(expr.id)
        return r.start if r is not None else 0
