"""
interpreter.py - Avaliação de expressões CEL checadas

Propósito:
    Avaliar uma CheckedAst sem variáveis (ou com uma activation simples)
    para exibir o resultado em inlay hints.

Componentes principais:
    - Interpreter.evaluate(ast, activation) → valor Python
    - UInt: inteiro sem sinal (distingue `1u` de `1`)
    - TypeValue: valor de tipo (`type(1)` → int)
    - format_value: representação textual de valores CEL

Notas de implementação:
    - Erros de avaliação são EvalError; && e || absorvem erros como na
      especificação da linguagem
    - Inteiros são verificados contra overflow de 64 bits
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

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

logger = logging.getLogger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1


class EvalError(Exception):
    """Erro durante a avaliação de uma expressão."""


class UInt(int):
    """Inteiro sem sinal de 64 bits."""

    def __repr__(self) -> str:
        return f"{int(self)}u"


class TypeValue:
    """Valor de tipo, resultado de `type(x)` ou de identificadores como `int`."""

    def __init__(self, name: str):
        self.name = name

    def __eq__(self, other) -> bool:
        return isinstance(other, TypeValue) and other.name == self.name

    def __hash__(self) -> int:
        return hash(("type", self.name))

    def __repr__(self) -> str:
        return self.name


_TYPE_NAMES = (
    "bool", "bytes", "double", "int", "uint", "string", "null_type", "list", "map", "type", "dyn",
)


def type_name_of(value: Any) -> str:
    if value is None:
        return "null_type"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, UInt):
        return "uint"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "double"
    if isinstance(value, str):
        return "string"
    if isinstance(value, bytes):
        return "bytes"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "map"
    if isinstance(value, TypeValue):
        return "type"
    if isinstance(value, timedelta):
        return "google.protobuf.Duration"
    if isinstance(value, datetime):
        return "google.protobuf.Timestamp"
    raise EvalError(f"unsupported value: {value!r}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_int(value: int) -> int:
    if value < _INT64_MIN or value > _INT64_MAX:
        raise EvalError("integer overflow")
    return value


def _check_uint(value: int) -> UInt:
    if value < 0 or value > _UINT64_MAX:
        raise EvalError("unsigned integer overflow")
    return UInt(value)


def _same_kind(a: Any, b: Any) -> bool:
    return type_name_of(a) == type_name_of(b)


def _no_overload(name: str, *args: Any) -> EvalError:
    rendered = ", ".join(type_name_of(a) for a in args)
    return EvalError(f"no such overload: {name}({rendered})")


def values_equal(a: Any, b: Any) -> bool:
    """Igualdade heterogênea: números comparam por valor, demais por tipo e valor."""
    if _is_number(a) and _is_number(b):
        if isinstance(a, float) and math.isnan(a):
            return False
        return a == b
    if not _same_kind(a, b):
        return False
    if isinstance(a, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict):
        if len(a) != len(b):
            return False
        for key, value in a.items():
            match = _map_lookup(b, key)
            if match is _MISSING or not values_equal(value, match):
                return False
        return True
    return a == b


_MISSING = object()


def _map_lookup(m: dict, key: Any) -> Any:
    for k, v in m.items():
        if values_equal(k, key):
            return v
    return _MISSING


def _compare(name: str, a: Any, b: Any) -> int:
    if _is_number(a) and _is_number(b):
        if a < b:
            return -1
        return 1 if a > b else 0
    if not _same_kind(a, b) or isinstance(a, (list, dict, TypeValue)) or a is None:
        raise _no_overload(name, a, b)
    if a < b:
        return -1
    return 1 if a > b else 0


def _add(a: Any, b: Any) -> Any:
    if isinstance(a, bool) or isinstance(b, bool):
        raise _no_overload("_+_", a, b)
    if isinstance(a, UInt) and isinstance(b, UInt):
        return _check_uint(a + b)
    if isinstance(a, int) and isinstance(b, int) and not isinstance(a, UInt) and not isinstance(b, UInt):
        return _check_int(a + b)
    if isinstance(a, float) and isinstance(b, float):
        return a + b
    if isinstance(a, str) and isinstance(b, str):
        return a + b
    if isinstance(a, bytes) and isinstance(b, bytes):
        return a + b
    if isinstance(a, list) and isinstance(b, list):
        return a + b
    if isinstance(a, datetime) and isinstance(b, timedelta):
        return a + b
    if isinstance(a, timedelta) and isinstance(b, (datetime, timedelta)):
        return b + a if isinstance(b, datetime) else a + b
    raise _no_overload("_+_", a, b)


def _sub(a: Any, b: Any) -> Any:
    if isinstance(a, bool) or isinstance(b, bool):
        raise _no_overload("_-_", a, b)
    if isinstance(a, UInt) and isinstance(b, UInt):
        return _check_uint(a - b)
    if isinstance(a, int) and isinstance(b, int) and not isinstance(a, UInt) and not isinstance(b, UInt):
        return _check_int(a - b)
    if isinstance(a, float) and isinstance(b, float):
        return a - b
    if isinstance(a, datetime) and isinstance(b, (datetime, timedelta)):
        return a - b
    if isinstance(a, timedelta) and isinstance(b, timedelta):
        return a - b
    raise _no_overload("_-_", a, b)


def _mul(a: Any, b: Any) -> Any:
    if isinstance(a, UInt) and isinstance(b, UInt):
        return _check_uint(a * b)
    if _plain_int(a) and _plain_int(b):
        return _check_int(a * b)
    if isinstance(a, float) and isinstance(b, float):
        return a * b
    raise _no_overload("_*_", a, b)


def _plain_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, (bool, UInt))


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _div(a: Any, b: Any) -> Any:
    if isinstance(a, UInt) and isinstance(b, UInt):
        if b == 0:
            raise EvalError("division by zero")
        return UInt(a // b)
    if _plain_int(a) and _plain_int(b):
        if b == 0:
            raise EvalError("division by zero")
        return _check_int(_trunc_div(a, b))
    if isinstance(a, float) and isinstance(b, float):
        if b == 0:
            if a == 0 or math.isnan(a):
                return math.nan
            return math.copysign(math.inf, a) * math.copysign(1.0, b)
        return a / b
    raise _no_overload("_/_", a, b)


def _mod(a: Any, b: Any) -> Any:
    if isinstance(a, UInt) and isinstance(b, UInt):
        if b == 0:
            raise EvalError("modulus by zero")
        return UInt(a % b)
    if _plain_int(a) and _plain_int(b):
        if b == 0:
            raise EvalError("modulus by zero")
        return a - b * _trunc_div(a, b)
    raise _no_overload("_%_", a, b)


def _negate(a: Any) -> Any:
    if _plain_int(a):
        return _check_int(-a)
    if isinstance(a, float):
        return -a
    raise _no_overload("-_", a)


def _index(container: Any, key: Any) -> Any:
    if isinstance(container, list):
        if isinstance(key, float) and key.is_integer():
            key = int(key)
        if not isinstance(key, int) or isinstance(key, bool):
            raise _no_overload("_[_]", container, key)
        if key < 0 or key >= len(container):
            raise EvalError(f"index out of bounds: {key}")
        return container[key]
    if isinstance(container, dict):
        value = _map_lookup(container, key)
        if value is _MISSING:
            raise EvalError(f"no such key: {format_value(key)}")
        return value
    raise _no_overload("_[_]", container, key)


def _contains_in(value: Any, container: Any) -> bool:
    if isinstance(container, list):
        return any(values_equal(value, item) for item in container)
    if isinstance(container, dict):
        return _map_lookup(container, value) is not _MISSING
    raise _no_overload("@in", value, container)


def _size(value: Any) -> int:
    if isinstance(value, (str, bytes, list, dict)):
        return len(value)
    raise _no_overload("size", value)


_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(h|ms|us|µs|ns|m|s)")


def parse_duration(text: str) -> timedelta:
    """Converte "1h30m", "-1.5s", "250ms" em timedelta."""
    body = text.strip()
    sign = 1
    if body[:1] in "+-":
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)
    pos = 0
    total = 0.0
    while pos < len(body):
        m = _DURATION_PART.match(body, pos)
        if m is None:
            raise EvalError(f"invalid duration: {text!r}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos == 0:
        raise EvalError(f"invalid duration: {text!r}")
    return timedelta(seconds=sign * total)


def parse_timestamp(text: str) -> datetime:
    """Converte um timestamp RFC 3339 em datetime com fuso."""
    candidate = text.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(candidate)
    except ValueError as e:
        raise EvalError(f"invalid timestamp: {text!r}") from e
    if value.tzinfo is None:
        raise EvalError(f"invalid timestamp: {text!r}")
    return value.astimezone(timezone.utc)


def _format_duration(value: timedelta) -> str:
    seconds = value.total_seconds()
    if seconds.is_integer():
        return f"{int(seconds)}s"
    return f"{seconds:.9f}".rstrip("0") + "s"


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _zone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        pass
    m = re.fullmatch(r"([+-])(\d{2}):(\d{2})", name)
    if m is None:
        raise EvalError(f"invalid timezone: {name!r}")
    delta = timedelta(hours=int(m.group(2)), minutes=int(m.group(3)))
    return timezone(delta if m.group(1) == "+" else -delta)


def _timestamp_getter(field: str) -> Callable:
    def getter(ts: Any, tz: Optional[str] = None) -> int:
        if isinstance(ts, timedelta):
            seconds = ts.total_seconds()
            return {
                "getHours": int(seconds // 3600),
                "getMinutes": int(seconds // 60),
                "getSeconds": int(seconds),
                "getMilliseconds": int(round(seconds * 1000)) % 1000,
            }[field]
        if not isinstance(ts, datetime):
            raise _no_overload(field, ts)
        local = ts.astimezone(_zone(tz)) if tz is not None else ts.astimezone(timezone.utc)
        return {
            "getFullYear": local.year,
            "getMonth": local.month - 1,
            "getDayOfYear": local.timetuple().tm_yday - 1,
            "getDayOfMonth": local.day - 1,
            "getDate": local.day,
            "getDayOfWeek": (local.weekday() + 1) % 7,
            "getHours": local.hour,
            "getMinutes": local.minute,
            "getSeconds": local.second,
            "getMilliseconds": local.microsecond // 1000,
        }[field]

    return getter


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise _no_overload("int", value)
    if isinstance(value, int):
        return _check_int(int(value))
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise EvalError("double out of range for int conversion")
        return _check_int(int(value))
    if isinstance(value, str):
        try:
            return _check_int(int(value, 10))
        except ValueError as e:
            raise EvalError(f"cannot convert {value!r} to int") from e
    if isinstance(value, datetime):
        return int(value.timestamp())
    raise _no_overload("int", value)


def _to_uint(value: Any) -> UInt:
    if isinstance(value, bool):
        raise _no_overload("uint", value)
    if isinstance(value, int):
        return _check_uint(int(value))
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise EvalError("double out of range for uint conversion")
        return _check_uint(int(value))
    if isinstance(value, str):
        try:
            return _check_uint(int(value, 10))
        except ValueError as e:
            raise EvalError(f"cannot convert {value!r} to uint") from e
    raise _no_overload("uint", value)


def _to_double(value: Any) -> float:
    if isinstance(value, bool):
        raise _no_overload("double", value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as e:
            raise EvalError(f"cannot convert {value!r} to double") from e
    raise _no_overload("double", value)


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value) if isinstance(value, float) else str(int(value))
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EvalError("invalid UTF-8 in bytes to string conversion") from e
    if isinstance(value, timedelta):
        return _format_duration(value)
    if isinstance(value, datetime):
        return _format_timestamp(value)
    raise _no_overload("string", value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    raise _no_overload("bytes", value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value in ("true", "True", "TRUE", "t", "1"):
            return True
        if value in ("false", "False", "FALSE", "f", "0"):
            return False
        raise EvalError(f"cannot convert {value!r} to bool")
    raise _no_overload("bool", value)


def _to_duration(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, str):
        return parse_duration(value)
    raise _no_overload("duration", value)


def _to_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return parse_timestamp(value)
    if _plain_int(value):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    raise _no_overload("timestamp", value)


def _string_method(name: str, fn: Callable[[str, str], bool]) -> Callable:
    def method(receiver: Any, arg: Any) -> bool:
        if not isinstance(receiver, str) or not isinstance(arg, str):
            raise _no_overload(name, receiver, arg)
        return fn(receiver, arg)

    return method


def _matches(text: Any, pattern: Any) -> bool:
    if not isinstance(text, str) or not isinstance(pattern, str):
        raise _no_overload("matches", text, pattern)
    try:
        return re.search(pattern, text) is not None
    except re.error as e:
        raise EvalError(f"invalid regular expression: {e}") from e


def _relational(name: str, predicate: Callable[[int], bool]) -> Callable:
    return lambda a, b: predicate(_compare(name, a, b))


def _not(a: Any) -> bool:
    if not isinstance(a, bool):
        raise _no_overload("!_", a)
    return not a


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "_+_": _add,
    "_-_": _sub,
    "_*_": _mul,
    "_/_": _div,
    "_%_": _mod,
    "-_": _negate,
    "!_": _not,
    "_==_": values_equal,
    "_!=_": lambda a, b: not values_equal(a, b),
    "_<_": _relational("_<_", lambda c: c < 0),
    "_<=_": _relational("_<=_", lambda c: c <= 0),
    "_>_": _relational("_>_", lambda c: c > 0),
    "_>=_": _relational("_>=_", lambda c: c >= 0),
    "_[_]": _index,
    "@in": _contains_in,
    "size": _size,
    "contains": _string_method("contains", lambda s, sub: sub in s),
    "startsWith": _string_method("startsWith", lambda s, p: s.startswith(p)),
    "endsWith": _string_method("endsWith", lambda s, p: s.endswith(p)),
    "matches": _matches,
    "int": _to_int,
    "uint": _to_uint,
    "double": _to_double,
    "string": _to_string,
    "bytes": _to_bytes,
    "bool": _to_bool,
    "dyn": lambda v: v,
    "type": lambda v: TypeValue(type_name_of(v)),
    "duration": _to_duration,
    "timestamp": _to_timestamp,
}

for _getter in (
    "getFullYear", "getMonth", "getDayOfYear", "getDayOfMonth", "getDate", "getDayOfWeek",
    "getHours", "getMinutes", "getSeconds", "getMilliseconds",
):
    FUNCTIONS[_getter] = _timestamp_getter(_getter)


class Interpreter:
    """Avaliador recursivo de árvores CEL."""

    def __init__(self, functions: Optional[dict[str, Callable[..., Any]]] = None):
        self._functions = functions if functions is not None else FUNCTIONS

    def evaluate(self, ast: ParsedAst, activation: Optional[dict[str, Any]] = None) -> Any:
        return self._eval(ast.expr, [dict(activation or {})])

    def _eval(self, expr: Expr, scopes: list[dict[str, Any]]) -> Any:
        if isinstance(expr, Literal):
            if expr.type_name == "uint":
                return UInt(expr.value)
            return expr.value
        if isinstance(expr, Ident):
            return self._resolve(expr.name, scopes)
        if isinstance(expr, Select):
            operand = self._eval(expr.operand, scopes)
            if not isinstance(operand, dict):
                raise EvalError(f"type '{type_name_of(operand)}' does not support field selection")
            value = _map_lookup(operand, expr.field)
            if expr.test_only:
                return value is not _MISSING
            if value is _MISSING:
                raise EvalError(f"no such key: {expr.field}")
            return value
        if isinstance(expr, Call):
            return self._call(expr, scopes)
        if isinstance(expr, ListExpr):
            return [self._eval(e, scopes) for e in expr.elements]
        if isinstance(expr, MapExpr):
            result: dict = {}
            for entry in expr.entries:
                key = self._eval(entry.key, scopes)
                if _map_lookup(result, key) is not _MISSING:
                    raise EvalError(f"Failed with repeated key: {format_value(key)}")
                result[key] = self._eval(entry.value, scopes)
            return result
        if isinstance(expr, Comprehension):
            return self._comprehension(expr, scopes)
        if isinstance(expr, StructExpr):
            raise EvalError(f"unknown type: {expr.type_name}")
        if isinstance(expr, Unspecified):
            raise EvalError("unspecified expression")
        raise TypeError(f"Tipo de nó desconhecido: {type(expr).__name__}")

    def _resolve(self, name: str, scopes: list[dict[str, Any]]) -> Any:
        for scope in reversed(scopes):
            if name in scope:
                return scope[name]
        if name in _TYPE_NAMES:
            return TypeValue(name)
        raise EvalError(f"no such attribute: {name}")

    def _comprehension(self, expr: Comprehension, scopes: list[dict[str, Any]]) -> Any:
        iter_range = self._eval(expr.iter_range, scopes)
        if isinstance(iter_range, dict):
            items = list(iter_range.keys())
        elif isinstance(iter_range, list):
            items = iter_range
        else:
            raise EvalError(f"expression of type '{type_name_of(iter_range)}' cannot be range of a comprehension")
        frame = {expr.accu_var: self._eval(expr.accu_init, scopes)}
        inner = scopes + [frame]
        for item in items:
            frame[expr.iter_var] = item
            if not self._eval(expr.loop_condition, inner):
                break
            frame[expr.accu_var] = self._eval(expr.loop_step, inner)
        frame.pop(expr.iter_var, None)
        return self._eval(expr.result, inner)

    def _call(self, expr: Call, scopes: list[dict[str, Any]]) -> Any:
        name = expr.function
        if name == "_&&_" or name == "_||_":
            return self._logical(name, expr.args, scopes)
        if name == "_?_:_":
            cond = self._eval(expr.args[0], scopes)
            if not isinstance(cond, bool):
                raise _no_overload(name, cond)
            return self._eval(expr.args[1] if cond else expr.args[2], scopes)
        if name == "@not_strictly_false":
            try:
                value = self._eval(expr.args[0], scopes)
            except EvalError:
                return True
            return value is not False

        args = []
        if expr.target is not None:
            args.append(self._eval(expr.target, scopes))
        args.extend(self._eval(a, scopes) for a in expr.args)
        fn = self._functions.get(name)
        if fn is None:
            raise EvalError(f"no such function: {name}")
        try:
            return fn(*args)
        except TypeError as e:
            raise _no_overload(name, *args) from e

    def _logical(self, name: str, args: list[Expr], scopes) -> bool:
        short_circuit = name == "_||_"
        error: Optional[EvalError] = None
        for arg in args:
            try:
                value = self._eval(arg, scopes)
            except EvalError as e:
                error = error or e
                continue
            if not isinstance(value, bool):
                error = error or _no_overload(name, value)
                continue
            if value is short_circuit:
                return short_circuit
        if error is not None:
            raise error
        return not short_circuit


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def format_value(value: Any) -> str:
    """Representação de um valor CEL como literal legível."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, UInt):
        return f"{int(value)}u"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, bytes):
        return "b" + _quote(value.decode("utf-8", errors="backslashreplace"))
    if isinstance(value, list):
        return "[" + ", ".join(format_value(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{format_value(k)}: {format_value(v)}" for k, v in value.items()) + "}"
    if isinstance(value, TypeValue):
        return value.name
    if isinstance(value, timedelta):
        return f'duration("{_format_duration(value)}")'
    if isinstance(value, datetime):
        return f'timestamp("{_format_timestamp(value)}")'
    return repr(value)
