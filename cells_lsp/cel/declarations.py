"""
declarations.py - Funções, operadores e macros da biblioteca padrão CEL

Propósito:
    Declarar os overloads conhecidos pelo checker e a documentação exibida
    por hover, completion e signature help.

Componentes principais:
    - Overload / FunctionDecl / MacroDecl / Doc
    - STANDARD_FUNCTIONS: nome interno → FunctionDecl
    - STANDARD_MACROS: macros has, all, exists, exists_one, map, filter
    - find_reverse / operator_symbol: nome interno → símbolo de exibição
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from cells_lsp.cel.types import (
    A,
    B,
    BOOL,
    BYTES,
    DOUBLE,
    DURATION,
    DYN,
    INT,
    NULL,
    STRING,
    TIMESTAMP,
    UINT,
    CelType,
    list_of,
    map_of,
    type_of,
)

# Nomes internos dos operadores → símbolo. "" = operador sem símbolo próprio.
OPERATORS: dict[str, str] = {
    "_+_": "+",
    "_-_": "-",
    "_*_": "*",
    "_/_": "/",
    "_%_": "%",
    "_==_": "==",
    "_!=_": "!=",
    "_<_": "<",
    "_<=_": "<=",
    "_>_": ">",
    "_>=_": ">=",
    "_&&_": "&&",
    "_||_": "||",
    "!_": "!",
    "-_": "-",
    "@in": "in",
    "_?_:_": "",
    "_[_]": "",
}

BINARY_OPERATORS = {
    "_+_", "_-_", "_*_", "_/_", "_%_", "_==_", "_!=_", "_<_", "_<=_",
    "_>_", "_>=_", "_&&_", "_||_", "@in",
}

NOT_STRICTLY_FALSE = "@not_strictly_false"

TYPE_CONVERSIONS = frozenset(
    {"bool", "bytes", "double", "duration", "dyn", "int", "string", "timestamp", "type", "uint"}
)

MACRO_NAMES = frozenset({"has", "all", "exists", "exists_one", "map", "filter"})

# Tipos expostos como identificadores (ex.: `type(1) == int`)
TYPE_IDENTIFIERS: dict[str, CelType] = {
    "bool": type_of(BOOL),
    "bytes": type_of(BYTES),
    "double": type_of(DOUBLE),
    "int": type_of(INT),
    "uint": type_of(UINT),
    "string": type_of(STRING),
    "null_type": type_of(NULL),
    "list": type_of(list_of(DYN)),
    "map": type_of(map_of(DYN, DYN)),
    "type": type_of(type_of()),
    "dyn": type_of(DYN),
}


def find_reverse(name: str) -> Optional[str]:
    """Símbolo de exibição de um operador interno, ou None se não for operador."""
    return OPERATORS.get(name)


def operator_symbol(name: str) -> Optional[str]:
    """
    Símbolo usado em hover e semantic tokens.

    Returns:
        Símbolo do operador ("?" para o condicional) ou None
    """
    symbol = OPERATORS.get(name)
    if symbol:
        return symbol
    if name == "_?_:_":
        return "?"
    return None


def is_macro(name: str) -> bool:
    return name in MACRO_NAMES


def is_type_conversion(name: str) -> bool:
    return name in TYPE_CONVERSIONS


@dataclass(frozen=True)
class Doc:
    """Documentação estruturada de função, operador ou macro."""

    name: str = ""
    signature: str = ""
    description: str = ""
    children: tuple[Doc, ...] = ()


@dataclass(frozen=True)
class Overload:
    id: str
    args: tuple[CelType, ...]
    result: CelType
    member: bool = False

    def signature(self, function: str) -> str:
        """Assinatura legível: `nome(args) -> res` ou `recv.nome(args) -> res`."""
        symbol = find_reverse(function)
        arg_names = [str(a) for a in self.args]
        if symbol:
            if len(arg_names) == 1:
                return f"{symbol}{arg_names[0]} -> {self.result}"
            return f"{arg_names[0]} {symbol} {arg_names[1]} -> {self.result}"
        if function == "_?_:_":
            return f"{arg_names[0]} ? {arg_names[1]} : {arg_names[2]} -> {self.result}"
        if function == "_[_]":
            return f"{arg_names[0]}[{arg_names[1]}] -> {self.result}"
        if self.member and arg_names:
            return f"{arg_names[0]}.{function}({', '.join(arg_names[1:])}) -> {self.result}"
        return f"{function}({', '.join(arg_names)}) -> {self.result}"


@dataclass
class FunctionDecl:
    name: str
    overloads: list[Overload]
    description: str = ""
    examples: tuple[str, ...] = ()

    def documentation(self) -> Doc:
        children = tuple(Doc(signature=o.signature(self.name)) for o in self.overloads)
        return Doc(name=self.name, description=self.description, children=children)

    @property
    def has_member_overloads(self) -> bool:
        return any(o.member for o in self.overloads)


@dataclass
class MacroDecl:
    name: str
    arg_counts: tuple[int, ...]
    member: bool
    description: str
    examples: tuple[str, ...] = field(default_factory=tuple)

    def documentation(self) -> Doc:
        children = tuple(Doc(description=e) for e in self.examples)
        return Doc(name=self.name, description=self.description, children=children)


def _ov(oid: str, args, result, member: bool = False) -> Overload:
    return Overload(oid, tuple(args), result, member)


_NUMERIC = ((INT, "int64"), (UINT, "uint64"), (DOUBLE, "double"))
_ORDERED = _NUMERIC + (
    (STRING, "string"),
    (BYTES, "bytes"),
    (BOOL, "bool"),
    (TIMESTAMP, "timestamp"),
    (DURATION, "duration"),
)


def _arith(oid: str, extra: list[Overload]) -> list[Overload]:
    return [_ov(f"{oid}_{suffix}", (t, t), t) for t, suffix in _NUMERIC] + extra


def _relation(oid: str) -> list[Overload]:
    overloads = [_ov(f"{oid}_{suffix}", (t, t), BOOL) for t, suffix in _ORDERED]
    for left, lsuffix in _NUMERIC:
        for right, rsuffix in _NUMERIC:
            if left is not right:
                overloads.append(_ov(f"{oid}_{lsuffix}_{rsuffix}", (left, right), BOOL))
    return overloads


def _getters(name: str, description: str, on_duration: bool = False) -> FunctionDecl:
    overloads = [
        _ov(f"timestamp_to_{name}", (TIMESTAMP,), INT, member=True),
        _ov(f"timestamp_to_{name}_with_tz", (TIMESTAMP, STRING), INT, member=True),
    ]
    if on_duration:
        overloads.append(_ov(f"duration_to_{name}", (DURATION,), INT, member=True))
    return FunctionDecl(name, overloads, description)


def _standard_functions() -> dict[str, FunctionDecl]:
    decls = [
        FunctionDecl(
            "_+_",
            _arith("add", [
                _ov("add_string", (STRING, STRING), STRING),
                _ov("add_bytes", (BYTES, BYTES), BYTES),
                _ov("add_list", (list_of(A), list_of(A)), list_of(A)),
                _ov("add_timestamp_duration", (TIMESTAMP, DURATION), TIMESTAMP),
                _ov("add_duration_timestamp", (DURATION, TIMESTAMP), TIMESTAMP),
                _ov("add_duration_duration", (DURATION, DURATION), DURATION),
            ]),
            "adds two numeric values or concatenates two strings, bytes, or lists.",
        ),
        FunctionDecl(
            "_-_",
            _arith("subtract", [
                _ov("subtract_timestamp_timestamp", (TIMESTAMP, TIMESTAMP), DURATION),
                _ov("subtract_timestamp_duration", (TIMESTAMP, DURATION), TIMESTAMP),
                _ov("subtract_duration_duration", (DURATION, DURATION), DURATION),
            ]),
            "subtract two numbers, or two time-related values",
        ),
        FunctionDecl("_*_", _arith("multiply", []), "multiply two numbers"),
        FunctionDecl(
            "_/_", _arith("divide", []),
            "divide two numbers (integer division truncates toward zero)",
        ),
        FunctionDecl(
            "_%_",
            [_ov("modulo_int64", (INT, INT), INT), _ov("modulo_uint64", (UINT, UINT), UINT)],
            "compute the modulus of one integer into another",
        ),
        FunctionDecl("-_", [
            _ov("negate_int64", (INT,), INT),
            _ov("negate_double", (DOUBLE,), DOUBLE),
        ], "negate a numeric value"),
        FunctionDecl("!_", [_ov("logical_not", (BOOL,), BOOL)], "logically negate a boolean value"),
        FunctionDecl("_&&_", [_ov("logical_and", (BOOL, BOOL), BOOL)],
                     "logically AND two boolean values. Errors and unknown values are "
                     "valid inputs and will not halt evaluation."),
        FunctionDecl("_||_", [_ov("logical_or", (BOOL, BOOL), BOOL)],
                     "logically OR two boolean values. Errors and unknown values are "
                     "valid inputs and will not halt evaluation."),
        FunctionDecl("_==_", [_ov("equals", (A, A), BOOL)], "compare two values of the same type for equality"),
        FunctionDecl("_!=_", [_ov("not_equals", (A, A), BOOL)], "compare two values of the same type for inequality"),
        FunctionDecl("_<_", _relation("less"), "compare two values and return true if the first value is less than the second"),
        FunctionDecl("_<=_", _relation("less_equals"),
                     "compare two values and return true if the first value is less than or equal to the second"),
        FunctionDecl("_>_", _relation("greater"),
                     "compare two values and return true if the first value is greater than the second"),
        FunctionDecl("_>=_", _relation("greater_equals"),
                     "compare two values and return true if the first value is greater than or equal to the second"),
        FunctionDecl("_?_:_", [_ov("conditional", (BOOL, A, A), A)],
                     "The ternary operator tests a boolean predicate and returns the left-hand side "
                     "(truthy) expression if true, or the right-hand side (falsy) expression if false"),
        FunctionDecl("_[_]", [
            _ov("index_list", (list_of(A), INT), A),
            _ov("index_map", (map_of(A, B), A), B),
        ], "select a value from a list by index, or value from a map by key"),
        FunctionDecl("@in", [
            _ov("in_list", (A, list_of(A)), BOOL),
            _ov("in_map", (A, map_of(A, B)), BOOL),
        ], "test whether a value exists in a list, or a key exists in a map"),
        FunctionDecl(NOT_STRICTLY_FALSE, [_ov("not_strictly_false", (BOOL,), BOOL)], ""),
        FunctionDecl("size", [
            _ov("size_string", (STRING,), INT),
            _ov("size_bytes", (BYTES,), INT),
            _ov("size_list", (list_of(A),), INT),
            _ov("size_map", (map_of(A, B),), INT),
            _ov("string_size", (STRING,), INT, member=True),
            _ov("bytes_size", (BYTES,), INT, member=True),
            _ov("list_size", (list_of(A),), INT, member=True),
            _ov("map_size", (map_of(A, B),), INT, member=True),
        ], "compute the size of a list or map, the number of characters in a string, "
           "or the number of bytes in a sequence"),
        FunctionDecl("contains", [_ov("contains_string", (STRING, STRING), BOOL, member=True)],
                     "test whether a string contains a substring"),
        FunctionDecl("startsWith", [_ov("starts_with_string", (STRING, STRING), BOOL, member=True)],
                     "test whether a string starts with a substring prefix"),
        FunctionDecl("endsWith", [_ov("ends_with_string", (STRING, STRING), BOOL, member=True)],
                     "test whether a string ends with a substring suffix"),
        FunctionDecl("matches", [
            _ov("matches", (STRING, STRING), BOOL),
            _ov("matches_string", (STRING, STRING), BOOL, member=True),
        ], "test whether a string matches an RE2 regular expression"),
        FunctionDecl("bool", [
            _ov("bool_to_bool", (BOOL,), BOOL),
            _ov("string_to_bool", (STRING,), BOOL),
        ], "convert a value to a boolean"),
        FunctionDecl("bytes", [
            _ov("bytes_to_bytes", (BYTES,), BYTES),
            _ov("string_to_bytes", (STRING,), BYTES),
        ], "convert a value to bytes"),
        FunctionDecl("double", [
            _ov("double_to_double", (DOUBLE,), DOUBLE),
            _ov("int64_to_double", (INT,), DOUBLE),
            _ov("uint64_to_double", (UINT,), DOUBLE),
            _ov("string_to_double", (STRING,), DOUBLE),
        ], "convert a value to a double"),
        FunctionDecl("int", [
            _ov("int64_to_int64", (INT,), INT),
            _ov("uint64_to_int64", (UINT,), INT),
            _ov("double_to_int64", (DOUBLE,), INT),
            _ov("string_to_int64", (STRING,), INT),
            _ov("timestamp_to_int64", (TIMESTAMP,), INT),
        ], "convert a value to an int"),
        FunctionDecl("uint", [
            _ov("uint64_to_uint64", (UINT,), UINT),
            _ov("int64_to_uint64", (INT,), UINT),
            _ov("double_to_uint64", (DOUBLE,), UINT),
            _ov("string_to_uint64", (STRING,), UINT),
        ], "convert a value to a uint"),
        FunctionDecl("string", [
            _ov("string_to_string", (STRING,), STRING),
            _ov("bool_to_string", (BOOL,), STRING),
            _ov("int64_to_string", (INT,), STRING),
            _ov("uint64_to_string", (UINT,), STRING),
            _ov("double_to_string", (DOUBLE,), STRING),
            _ov("bytes_to_string", (BYTES,), STRING),
            _ov("timestamp_to_string", (TIMESTAMP,), STRING),
            _ov("duration_to_string", (DURATION,), STRING),
        ], "convert a value to a string"),
        FunctionDecl("dyn", [_ov("to_dyn", (A,), DYN)],
                     "indicate that the type is dynamic for type-checking purposes"),
        FunctionDecl("type", [_ov("type", (A,), type_of(A))], "convert a value to its type identifier"),
        FunctionDecl("duration", [
            _ov("duration_to_duration", (DURATION,), DURATION),
            _ov("string_to_duration", (STRING,), DURATION),
        ], "convert a value to a google.protobuf.Duration"),
        FunctionDecl("timestamp", [
            _ov("timestamp_to_timestamp", (TIMESTAMP,), TIMESTAMP),
            _ov("string_to_timestamp", (STRING,), TIMESTAMP),
            _ov("int64_to_timestamp", (INT,), TIMESTAMP),
        ], "convert a value to a google.protobuf.Timestamp"),
        _getters("getFullYear", "get the 0-based full year from a timestamp, UTC unless an IANA timezone is specified."),
        _getters("getMonth", "get the 0-based month from a timestamp, UTC unless an IANA timezone is specified."),
        _getters("getDayOfYear", "get the 0-based day of the year from a timestamp, UTC unless an IANA timezone is specified."),
        _getters("getDayOfMonth", "get the 0-based day of the month from a timestamp, UTC unless an IANA timezone is specified."),
        _getters("getDate", "get the 1-based day of the month from a timestamp, UTC unless an IANA timezone is specified."),
        _getters("getDayOfWeek", "get the 0-based day of the week from a timestamp, UTC unless an IANA timezone is specified."),
        _getters("getHours", "get the hours portion from a timestamp, or convert a duration to hours", True),
        _getters("getMinutes", "get the minutes portion from a timestamp, or convert a duration to minutes", True),
        _getters("getSeconds", "get the seconds portion from a timestamp, or convert a duration to seconds", True),
        _getters("getMilliseconds", "get the milliseconds portion from a timestamp or duration", True),
    ]
    return {d.name: d for d in decls}


def _standard_macros() -> list[MacroDecl]:
    return [
        MacroDecl(
            "has", (1,), False,
            "check a protocol buffer message for the presence of a field, or check a map "
            "for the presence of a string key.\nOnly map accesses using the select notation "
            "are supported.",
            ("// true if the 'address' field exists in the 'user' message\nhas(user.address)",
             "// test whether the 'key_name' is set on the map which defines it\nhas({'key_name': 'value'}.key_name) // true"),
        ),
        MacroDecl(
            "all", (2,), True,
            "tests whether all elements in the input list or all keys in a map\n"
            "satisfy the given predicate. The all macro behaves in a manner consistent with\n"
            "the Logical AND operator including in how it absorbs errors and short-circuits.",
            ("[1, 2, 3].all(x, x > 0) // true", "[1, 2, 0].all(x, x > 0) // false",
             "['apple', 'banana', 'cherry'].all(fruit, fruit.size() > 3) // true"),
        ),
        MacroDecl(
            "exists", (2,), True,
            "tests whether any value in the list or any key in the map\n"
            "satisfies the predicate expression. The exists macro behaves in a manner\n"
            "consistent with the Logical OR operator including in how it absorbs errors and\n"
            "short-circuits.",
            ("[1, 2, 3].exists(i, i % 2 != 0) // true", "[].exists(i, i > 0) // false",
             "{'apple': 1, 'banana': 2}.exists(fruit, fruit == 'apple') // true"),
        ),
        MacroDecl(
            "exists_one", (2,), True,
            "tests whether exactly one list element or map key satisfies\n"
            "the predicate expression. This macro does not short-circuit in order to remain\n"
            "consistent with logical operators being the only operators which can absorb\n"
            "errors within CEL.",
            ("[1, 2, 2].exists_one(i, i < 2) // true", "{'a': 'hello', 'aa': 'hellohello'}.exists_one(k, k.startsWith('a')) // false"),
        ),
        MacroDecl(
            "map", (2, 3), True,
            "generates a new list by transforming each input element or map key\n"
            "with a transformation expression. An optional filter expression may be provided\n"
            "to select the elements to transform.",
            ("[1, 2, 3].map(x, x * 2) // [2, 4, 6]", "[5, 10, 15].map(x, x / 5) // [1, 2, 3]",
             "[1, 2, 3].map(x, x % 2 == 1, x * 2) // [2, 6]"),
        ),
        MacroDecl(
            "filter", (2,), True,
            "returns a list containing only the elements from the input list\n"
            "that satisfy the given predicate",
            ("[1, 2, 3].filter(x, x > 1) // [2, 3]", "['cat', 'dog', 'bird', 'fish'].filter(pet, pet.size() == 3) // ['cat', 'dog']"),
        ),
    ]


STANDARD_FUNCTIONS: dict[str, FunctionDecl] = _standard_functions()
STANDARD_MACROS: list[MacroDecl] = _standard_macros()
