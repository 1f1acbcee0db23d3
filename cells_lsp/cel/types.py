"""
types.py - Sistema de tipos CEL usado pelo checker

Componentes principais:
    - CelType: tipo imutável (primitivos, list, map, type, parâmetros)
    - Constantes INT, UINT, DOUBLE, BOOL, STRING, BYTES, NULL, DYN, ...
    - unify / substitute: resolução de parâmetros de tipo em overloads
    - is_assignable: compatibilidade usada por completion
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CelType:
    kind: str
    params: tuple[CelType, ...] = ()
    name: str = ""

    def __str__(self) -> str:
        if self.kind == "type_param":
            return self.name
        if self.kind == "list":
            return f"list({self.params[0]})"
        if self.kind == "map":
            return f"map({self.params[0]}, {self.params[1]})"
        if self.kind == "type":
            if self.params:
                return f"type({self.params[0]})"
            return "type"
        if self.kind == "message":
            return self.name
        return self.kind

    @property
    def is_type_param(self) -> bool:
        return self.kind == "type_param"

    @property
    def is_dyn_or_error(self) -> bool:
        return self.kind in ("dyn", "error")


INT = CelType("int")
UINT = CelType("uint")
DOUBLE = CelType("double")
BOOL = CelType("bool")
STRING = CelType("string")
BYTES = CelType("bytes")
NULL = CelType("null_type")
DYN = CelType("dyn")
ERROR = CelType("error")
DURATION = CelType("google.protobuf.Duration")
TIMESTAMP = CelType("google.protobuf.Timestamp")

A = CelType("type_param", name="A")
B = CelType("type_param", name="B")


def list_of(elem: CelType) -> CelType:
    return CelType("list", (elem,))


def map_of(key: CelType, value: CelType) -> CelType:
    return CelType("map", (key, value))


def type_of(t: Optional[CelType] = None) -> CelType:
    return CelType("type", (t,) if t is not None else ())


def substitute(t: CelType, bindings: dict[str, CelType], free_as_dyn: bool = True) -> CelType:
    """Aplica as ligações de parâmetros de tipo em `t`."""
    if t.is_type_param:
        bound = bindings.get(t.name)
        if bound is not None:
            return substitute(bound, bindings, free_as_dyn)
        return DYN if free_as_dyn else t
    if t.params:
        return CelType(t.kind, tuple(substitute(p, bindings, free_as_dyn) for p in t.params), t.name)
    return t


def unify(param: CelType, arg: CelType, bindings: dict[str, CelType]) -> bool:
    """
    Verifica se `arg` satisfaz `param`, ligando parâmetros de tipo.

    dyn e error são compatíveis com qualquer tipo.
    """
    if arg.is_dyn_or_error or param.kind == "dyn":
        if param.is_type_param and param.name not in bindings and arg.kind == "dyn":
            bindings[param.name] = DYN
        return True
    if param.is_type_param:
        bound = bindings.get(param.name)
        if bound is None:
            bindings[param.name] = arg
            return True
        if bound.kind == "dyn":
            bindings[param.name] = arg
            return True
        return unify(bound, arg, bindings)
    if param.kind != arg.kind or param.name != arg.name:
        return False
    if param.kind == "type" and (not param.params or not arg.params):
        return True
    if len(param.params) != len(arg.params):
        return False
    return all(unify(p, a, bindings) for p, a in zip(param.params, arg.params))


def is_assignable(target: CelType, source: CelType) -> bool:
    """True se um valor de tipo `source` pode ocupar o lugar de `target`."""
    return unify(target, source, {})


def join(types: list[CelType]) -> CelType:
    """Tipo comum de elementos de lista/mapa (dyn quando heterogêneos)."""
    concrete = [t for t in types if not t.is_dyn_or_error]
    if not concrete:
        return DYN
    first = concrete[0]
    for t in concrete[1:]:
        if not (is_assignable(first, t) and is_assignable(t, first)):
            return DYN
    return first
