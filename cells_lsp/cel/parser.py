"""
parser.py - Parser CEL baseado em Lark

Propósito:
    Converter texto CEL em ParsedAst: nós com id inteiro por parse, faixas
    de offset por nó e expansão das macros padrão (has, all, exists,
    exists_one, map, filter) com registro da chamada original.

Componentes principais:
    - GRAMMAR: gramática LALR da linguagem
    - ParserOptions: expand_macros / track_macro_calls
    - Parser.parse(text) → (ParsedAst | None, list[CelIssue])

Notas de implementação:
    - Lark com parser="lalr" e terminais nomeados para preservar a posição
      de operadores e parênteses
    - Mensagens de erro seguem a grafia usual do CEL ("Syntax error:
      mismatched input ...", "token recognition error", "missing ')'")
    - Offsets são índices de code point no texto (runes)

Dependências críticas:
    - lark: gerador de parser LALR
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from lark import Lark, Token, Transformer
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedToken, VisitError

from cells_lsp.cel.ast import (
    Call,
    CelIssue,
    Comprehension,
    Expr,
    Ident,
    ListExpr,
    Literal,
    MapEntry,
    MapExpr,
    OffsetRange,
    ParsedAst,
    Select,
    SourceInfo,
    StructExpr,
    StructField,
)

logger = logging.getLogger(__name__)

GRAMMAR = r"""
?start: expr

?expr: conditional_or
     | conditional_or QUESTION conditional_or COLON expr -> ternary

?conditional_or: conditional_and
     | conditional_or LOR conditional_and -> binop

?conditional_and: relation
     | conditional_and LAND relation -> binop

?relation: addition
     | relation (LT | LE | GT | GE | EQ | NE | IN) addition -> binop

?addition: multiplication
     | addition (PLUS | MINUS) multiplication -> binop

?multiplication: unary
     | multiplication (STAR | SLASH | PERCENT) unary -> binop

?unary: member
     | BANG unary -> unary_op
     | MINUS unary -> unary_op

?member: primary
     | member DOT IDENT -> select
     | member DOT IDENT LPAREN [args] RPAREN -> member_call
     | member LBRACKET expr RBRACKET -> index
     | member LBRACE [fields] RBRACE -> struct

?primary: IDENT -> ident
     | IDENT LPAREN [args] RPAREN -> global_call
     | LPAREN expr RPAREN -> paren
     | LBRACKET [elements] RBRACKET -> list
     | LBRACE [entries] RBRACE -> map
     | literal

args: expr (COMMA expr)*
elements: expr (COMMA expr)* [COMMA]
entries: entry (COMMA entry)* [COMMA]
entry: expr COLON expr
fields: field (COMMA field)* [COMMA]
field: IDENT COLON expr

literal: INT | UINT | FLOAT | STRING | BYTES | TRUE | FALSE | NULL

TRUE: "true"
FALSE: "false"
NULL: "null"
IN: "in"

QUESTION: "?"
COLON: ":"
LOR: "||"
LAND: "&&"
LE: "<="
GE: ">="
EQ: "=="
NE: "!="
LT: "<"
GT: ">"
PLUS: "+"
MINUS: "-"
STAR: "*"
SLASH: "/"
PERCENT: "%"
BANG: "!"
DOT: "."
COMMA: ","
LPAREN: "("
RPAREN: ")"
LBRACKET: "["
RBRACKET: "]"
LBRACE: "{"
RBRACE: "}"

STRING.2: /[rR]?(\"\"\"(?:[^\\]|\\.)*?\"\"\"|'''(?:[^\\]|\\.)*?'''|"(?:[^"\\\n\r]|\\.)*"|'(?:[^'\\\n\r]|\\.)*')/s
BYTES.2: /([bB][rR]?|[rR][bB])(\"\"\"(?:[^\\]|\\.)*?\"\"\"|'''(?:[^\\]|\\.)*?'''|"(?:[^"\\\n\r]|\\.)*"|'(?:[^'\\\n\r]|\\.)*')/s
FLOAT.3: /[0-9]+\.[0-9]+([eE][+-]?[0-9]+)?|[0-9]+[eE][+-]?[0-9]+|\.[0-9]+([eE][+-]?[0-9]+)?/
UINT.2: /(0[xX][0-9a-fA-F]+|[0-9]+)[uU]/
INT.1: /0[xX][0-9a-fA-F]+|[0-9]+/
IDENT: /[_a-zA-Z][_a-zA-Z0-9]*/

COMMENT: /\/\/[^\n]*/
WS: /[ \t\r\n\f]+/
%ignore COMMENT
%ignore WS
"""

# Grafia de terminais em mensagens de erro
_TERMINAL_SPELLING = {
    "IDENT": "IDENTIFIER",
    "INT": "NUM_INT",
    "UINT": "NUM_UINT",
    "FLOAT": "NUM_FLOAT",
    "STRING": "STRING",
    "BYTES": "BYTES",
    "$END": "<EOF>",
}

ACCUMULATOR_VAR = "@result"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1

_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    "'": "'",
    '"': '"',
    "`": "`",
    "?": "?",
}


class _SyntaxFailure(Exception):
    """Erro semântico detectado durante a construção da árvore."""

    def __init__(self, offset: int, message: str):
        super().__init__(message)
        self.offset = offset
        self.message = message


@dataclass(frozen=True)
class ParserOptions:
    expand_macros: bool = True
    track_macro_calls: bool = True


def _unescape(body: str, as_bytes: bool, offset: int):
    """Processa sequências de escape de literais string/bytes."""
    out: list = []

    def emit_text(s: str):
        out.append(s.encode("utf-8") if as_bytes else s)

    i = 0
    n = len(body)
    while i < n:
        ch = body[i]
        if ch != "\\":
            emit_text(ch)
            i += 1
            continue
        if i + 1 >= n:
            raise _SyntaxFailure(offset, "Syntax error: token recognition error at: '\\'")
        esc = body[i + 1]
        if esc in _SIMPLE_ESCAPES:
            emit_text(_SIMPLE_ESCAPES[esc])
            i += 2
            continue
        if esc in "xX":
            digits = body[i + 2:i + 4]
            if len(digits) != 2 or not re.fullmatch(r"[0-9a-fA-F]{2}", digits):
                raise _SyntaxFailure(
                    offset, f"Syntax error: token recognition error at: '\\{esc}{digits}'"
                )
            value = int(digits, 16)
            out.append(bytes([value]) if as_bytes else chr(value))
            i += 4
            continue
        if esc in "uU":
            width = 4 if esc == "u" else 8
            digits = body[i + 2:i + 2 + width]
            if as_bytes or len(digits) != width or not re.fullmatch(r"[0-9a-fA-F]+", digits):
                raise _SyntaxFailure(
                    offset, f"Syntax error: token recognition error at: '\\{esc}{digits}'"
                )
            code = int(digits, 16)
            if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
                raise _SyntaxFailure(offset, f"Syntax error: invalid unicode code point '\\{esc}{digits}'")
            emit_text(chr(code))
            i += 2 + width
            continue
        if esc in "0123":
            digits = body[i + 1:i + 4]
            if len(digits) != 3 or not re.fullmatch(r"[0-7]{3}", digits):
                raise _SyntaxFailure(
                    offset, f"Syntax error: token recognition error at: '\\{digits}'"
                )
            value = int(digits, 8)
            out.append(bytes([value]) if as_bytes else chr(value))
            i += 4
            continue
        raise _SyntaxFailure(offset, f"Syntax error: token recognition error at: '\\{esc}'")

    if as_bytes:
        return b"".join(out)
    return "".join(out)


def _decode_quoted(raw: str, as_bytes: bool, offset: int):
    prefix_len = 0
    while raw[prefix_len] not in "'\"":
        prefix_len += 1
    prefix = raw[:prefix_len].lower()
    quoted = raw[prefix_len:]
    quote_len = 3 if quoted[:3] in ('"""', "'''") else 1
    body = quoted[quote_len:-quote_len]
    if "r" in prefix:
        return body.encode("utf-8") if as_bytes else body
    return _unescape(body, as_bytes, offset)


class _AstBuilder(Transformer):
    """Converte a árvore do Lark em nós Expr, registrando offsets."""

    def __init__(self, text: str, options: ParserOptions):
        super().__init__()
        self._text = text
        self._options = options
        self._next_id = 0
        self.offsets: dict[int, OffsetRange] = {}
        self.extents: dict[int, OffsetRange] = {}
        self.parens: dict[int, OffsetRange] = {}
        self.macro_calls: dict[int, Call] = {}

    # --- utilitários -------------------------------------------------

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _record(self, expr_id: int, start: int, stop: int, extent: Optional[tuple[int, int]] = None):
        self.offsets[expr_id] = OffsetRange(start, stop)
        lo, hi = extent if extent is not None else (start, stop)
        self.extents[expr_id] = OffsetRange(lo, hi)

    def _span(self, first, last) -> tuple[int, int]:
        def start_of(x):
            if isinstance(x, Token):
                return x.start_pos
            return self.extents[x.id].start

        def stop_of(x):
            if isinstance(x, Token):
                return x.end_pos
            return self.extents[x.id].stop

        return start_of(first), stop_of(last)

    @staticmethod
    def _exprs(children) -> list:
        return [c for c in children if c is not None and not isinstance(c, Token)]

    # --- folhas ------------------------------------------------------

    def ident(self, children):
        (tok,) = children
        node = Ident(self._new_id(), str(tok))
        self._record(node.id, tok.start_pos, tok.end_pos)
        return node

    def literal(self, children):
        (tok,) = children
        kind = tok.type
        text = str(tok)
        start = tok.start_pos
        if kind == "TRUE":
            value, type_name = True, "bool"
        elif kind == "FALSE":
            value, type_name = False, "bool"
        elif kind == "NULL":
            value, type_name = None, "null_type"
        elif kind == "INT":
            value = int(text, 0) if text.lower().startswith("0x") else int(text)
            negated = start > 0 and self._text[start - 1] == "-"
            if value > _INT64_MAX and not (negated and value == _INT64_MAX + 1):
                raise _SyntaxFailure(start, "invalid int literal")
            type_name = "int"
        elif kind == "UINT":
            digits = text[:-1]
            value = int(digits, 0) if digits.lower().startswith("0x") else int(digits)
            if value > _UINT64_MAX:
                raise _SyntaxFailure(start, "invalid uint literal")
            type_name = "uint"
        elif kind == "FLOAT":
            value, type_name = float(text), "double"
        elif kind == "STRING":
            value, type_name = _decode_quoted(text, False, start), "string"
        elif kind == "BYTES":
            value, type_name = _decode_quoted(text, True, start), "bytes"
        else:
            raise _SyntaxFailure(start, f"Syntax error: unexpected literal '{text}'")
        node = Literal(self._new_id(), value, type_name)
        self._record(node.id, tok.start_pos, tok.end_pos)
        return node

    # --- operadores --------------------------------------------------

    def binop(self, children):
        left, op, right = children
        name = {
            "LOR": "_||_",
            "LAND": "_&&_",
            "LT": "_<_",
            "LE": "_<=_",
            "GT": "_>_",
            "GE": "_>=_",
            "EQ": "_==_",
            "NE": "_!=_",
            "IN": "@in",
            "PLUS": "_+_",
            "MINUS": "_-_",
            "STAR": "_*_",
            "SLASH": "_/_",
            "PERCENT": "_%_",
        }[op.type]
        node = Call(self._new_id(), name, [left, right])
        self._record(node.id, op.start_pos, op.end_pos, self._span(left, right))
        return node

    def unary_op(self, children):
        op, operand = children
        if (
            op.type == "MINUS"
            and isinstance(operand, Literal)
            and operand.type_name in ("int", "double")
            and self.offsets[operand.id].start == op.end_pos
        ):
            # "-1" é um literal negativo, não uma negação
            value = -operand.value
            if operand.type_name == "int" and value < _INT64_MIN:
                raise _SyntaxFailure(op.start_pos, "invalid int literal")
            operand.value = value
            stop = self.offsets[operand.id].stop
            self._record(operand.id, op.start_pos, stop)
            return operand
        if isinstance(operand, Literal) and operand.type_name == "int" and operand.value > _INT64_MAX:
            raise _SyntaxFailure(self.offsets[operand.id].start, "invalid int literal")
        name = "!_" if op.type == "BANG" else "-_"
        node = Call(self._new_id(), name, [operand])
        self._record(node.id, op.start_pos, op.end_pos, self._span(op, operand))
        return node

    def ternary(self, children):
        cond, question, truthy, _colon, falsy = children
        node = Call(self._new_id(), "_?_:_", [cond, truthy, falsy])
        self._record(node.id, question.start_pos, question.end_pos, self._span(cond, falsy))
        return node

    def paren(self, children):
        _lparen, inner, _rparen = children
        return inner

    # --- membros -----------------------------------------------------

    def select(self, children):
        operand, _dot, name = children
        node = Select(self._new_id(), operand, str(name))
        self._record(node.id, name.start_pos, name.end_pos, self._span(operand, name))
        return node

    def index(self, children):
        operand, lbracket, key, rbracket = children
        node = Call(self._new_id(), "_[_]", [operand, key])
        self._record(node.id, lbracket.start_pos, lbracket.end_pos, self._span(operand, rbracket))
        return node

    def args(self, children):
        return self._exprs(children)

    def member_call(self, children):
        target, _dot, name, lparen, args, rparen = children
        args = args or []
        extent = self._span(target, rparen)
        return self._call(str(name), target, args, name, lparen, rparen, extent)

    def global_call(self, children):
        name, lparen, args, rparen = children
        args = args or []
        extent = self._span(name, rparen)
        return self._call(str(name), None, args, name, lparen, rparen, extent)

    def _call(self, function, target, args, name_tok, lparen, rparen, extent):
        if self._options.expand_macros:
            expanded = self._expand_macro(function, target, args, name_tok, lparen, rparen, extent)
            if expanded is not None:
                return expanded
        node = Call(self._new_id(), function, list(args), target)
        self._record(node.id, name_tok.start_pos, name_tok.end_pos, extent)
        self.parens[node.id] = OffsetRange(lparen.start_pos, rparen.end_pos)
        return node

    # --- construtores ------------------------------------------------

    def elements(self, children):
        return self._exprs(children)

    def list(self, children):
        lbracket, elements, rbracket = children
        node = ListExpr(self._new_id(), list(elements or []))
        self._record(node.id, lbracket.start_pos, rbracket.end_pos)
        return node

    def entry(self, children):
        key, colon, value = children
        entry = MapEntry(self._new_id(), key, value)
        self._record(entry.id, colon.start_pos, colon.end_pos, self._span(key, value))
        return entry

    def entries(self, children):
        return [c for c in children if isinstance(c, MapEntry)]

    def map(self, children):
        lbrace, entries, rbrace = children
        node = MapExpr(self._new_id(), list(entries or []))
        self._record(node.id, lbrace.start_pos, rbrace.end_pos)
        return node

    def field(self, children):
        name, _colon, value = children
        f = StructField(self._new_id(), str(name), value)
        self._record(f.id, name.start_pos, name.end_pos, self._span(name, value))
        return f

    def fields(self, children):
        return [c for c in children if isinstance(c, StructField)]

    def struct(self, children):
        type_expr, _lbrace, fields, rbrace = children
        type_name = _qualified_name(type_expr)
        if type_name is None:
            start = self.extents[type_expr.id].start
            raise _SyntaxFailure(start, "Syntax error: expected a message type name")
        node = StructExpr(self._new_id(), type_name, list(fields or []))
        start = self.extents[type_expr.id].start
        self._record(node.id, start, rbrace.end_pos)
        return node

    # --- macros ------------------------------------------------------

    def _expand_macro(self, function, target, args, name_tok, lparen, rparen, extent):
        member = target is not None
        if function == "has" and not member and len(args) == 1:
            arg = args[0]
            if not isinstance(arg, Select) or arg.test_only:
                raise _SyntaxFailure(lparen.start_pos, "invalid argument to has() macro")
            node = Select(self._new_id(), arg.operand, arg.field, test_only=True)
            self._record(node.id, extent[0], extent[1])
            self._track(node.id, function, None, args, name_tok, lparen, rparen, extent)
            return node
        if not member:
            return None
        if function in ("all", "exists", "exists_one", "filter") and len(args) == 2:
            pass
        elif function == "map" and len(args) in (2, 3):
            pass
        else:
            return None

        loop_var = args[0]
        if not isinstance(loop_var, Ident):
            start = self.extents[loop_var.id].start
            raise _SyntaxFailure(start, "argument must be a simple name")
        name = loop_var.name

        def accu() -> Ident:
            return Ident(self._new_id(), ACCUMULATOR_VAR)

        def lit(value, type_name) -> Literal:
            return Literal(self._new_id(), value, type_name)

        def call(fn, *call_args) -> Call:
            return Call(self._new_id(), fn, list(call_args))

        if function == "all":
            init = lit(True, "bool")
            condition = call("@not_strictly_false", accu())
            step = call("_&&_", accu(), args[1])
            result = accu()
        elif function == "exists":
            init = lit(False, "bool")
            condition = call("@not_strictly_false", call("!_", accu()))
            step = call("_||_", accu(), args[1])
            result = accu()
        elif function == "exists_one":
            init = lit(0, "int")
            condition = lit(True, "bool")
            step = call("_?_:_", args[1], call("_+_", accu(), lit(1, "int")), accu())
            result = call("_==_", accu(), lit(1, "int"))
        elif function == "filter":
            init = ListExpr(self._new_id(), [])
            condition = lit(True, "bool")
            appended = ListExpr(self._new_id(), [Ident(self._new_id(), name)])
            step = call("_?_:_", args[1], call("_+_", accu(), appended), accu())
            result = accu()
        else:
            init = ListExpr(self._new_id(), [])
            condition = lit(True, "bool")
            transform = args[-1]
            appended = call("_+_", accu(), ListExpr(self._new_id(), [transform]))
            if len(args) == 3:
                step = call("_?_:_", args[1], appended, accu())
            else:
                step = appended
            result = accu()

        node = Comprehension(
            self._new_id(),
            iter_var=name,
            iter_range=target,
            accu_var=ACCUMULATOR_VAR,
            accu_init=init,
            loop_condition=condition,
            loop_step=step,
            result=result,
        )
        self._record(node.id, extent[0], extent[1])
        self._track(node.id, function, target, args, name_tok, lparen, rparen, extent)
        return node

    def _track(self, expanded_id, function, target, args, name_tok, lparen, rparen, extent):
        if not self._options.track_macro_calls:
            return
        record = Call(self._new_id(), function, list(args), target)
        self._record(record.id, name_tok.start_pos, name_tok.end_pos, extent)
        self.parens[record.id] = OffsetRange(lparen.start_pos, rparen.end_pos)
        self.macro_calls[expanded_id] = record


def _qualified_name(expr: Expr) -> Optional[str]:
    if isinstance(expr, Ident):
        return expr.name
    if isinstance(expr, Select) and not expr.test_only:
        prefix = _qualified_name(expr.operand)
        if prefix is not None:
            return f"{prefix}.{expr.field}"
    return None


class Parser:
    """
    Parser CEL.

    Uma instância pode ser compartilhada entre threads: o Lark LALR não
    guarda estado entre chamadas de parse.
    """

    _lark: Optional[Lark] = None

    def __init__(self, options: Optional[ParserOptions] = None):
        self.options = options or ParserOptions()
        if Parser._lark is None:
            Parser._lark = Lark(GRAMMAR, parser="lalr", maybe_placeholders=True)
        self._parser = Parser._lark

    def parse(self, text: str) -> tuple[Optional[ParsedAst], list[CelIssue]]:
        """
        Faz o parse de uma expressão.

        Returns:
            (ParsedAst, []) em caso de sucesso, (None, issues) em caso de erro
        """
        source_info = SourceInfo(text)
        try:
            tree = self._parser.parse(text)
        except UnexpectedCharacters as e:
            return None, [self._issue(source_info, e.pos_in_stream, _char_error(text, e.pos_in_stream))]
        except UnexpectedToken as e:
            offset, message = _token_error(text, e)
            return None, [self._issue(source_info, offset, message)]
        except UnexpectedEOF:
            offset = len(text)
            return None, [self._issue(source_info, offset, "Syntax error: mismatched input '<EOF>'")]

        builder = _AstBuilder(text, self.options)
        try:
            expr = builder.transform(tree)
        except VisitError as e:
            failure = e.orig_exc
            if isinstance(failure, _SyntaxFailure):
                return None, [self._issue(source_info, failure.offset, failure.message)]
            raise
        except _SyntaxFailure as failure:
            return None, [self._issue(source_info, failure.offset, failure.message)]

        source_info.offsets = builder.offsets
        source_info.parens = builder.parens
        source_info.macro_calls = builder.macro_calls
        source_info.extents = builder.extents
        return ParsedAst(expr, source_info), []

    def comments(self, text: str) -> list[OffsetRange]:
        """
        Faixas (em runes) dos comentários de linha `//`.

        Usa o lexer da gramática, então `//` dentro de strings não conta.
        A varredura para no primeiro caractere irreconhecível.
        """
        found: list[OffsetRange] = []
        try:
            for token in self._parser.lex(text, dont_ignore=True):
                if token.type == "COMMENT":
                    found.append(OffsetRange(token.start_pos, token.end_pos))
        except UnexpectedCharacters as e:
            logger.debug(f"Varredura de comentários interrompida em {e.pos_in_stream}")
        return found

    @staticmethod
    def _issue(source_info: SourceInfo, offset: int, message: str) -> CelIssue:
        line, column = source_info.location(max(0, offset))
        return CelIssue(line, column, message)


def _char_error(text: str, pos: int) -> str:
    ch = text[pos] if 0 <= pos < len(text) else ""
    if ch in "\"'":
        # string não terminada: mostra o restante da linha
        rest = text[pos:].split("\n", 1)[0]
        return f"Syntax error: token recognition error at: '{rest}'"
    return f"Syntax error: token recognition error at: '{ch}'"


def _spell(terminal: str) -> str:
    if terminal in _TERMINAL_SPELLING:
        return _TERMINAL_SPELLING[terminal]
    literal = _LITERAL_SPELLING.get(terminal)
    if literal is not None:
        return f"'{literal}'"
    return terminal


_LITERAL_SPELLING = {
    name: value
    for name, value in re.findall(r'^([A-Z]+): "([^"]+)"$', GRAMMAR, flags=re.MULTILINE)
}


def _previous_significant_char(text: str, pos: int) -> str:
    i = pos - 1
    while i >= 0:
        ch = text[i]
        if ch in " \t\r\n\f":
            i -= 1
            continue
        # ignora comentário de linha que termina antes de pos
        line_start = text.rfind("\n", 0, i + 1) + 1
        comment = text.find("//", line_start, i + 1)
        if comment != -1 and not _inside_string(text[line_start:comment]):
            i = comment - 1
            continue
        return ch
    return ""


def _inside_string(prefix: str) -> bool:
    return prefix.count('"') % 2 == 1 or prefix.count("'") % 2 == 1


def _token_error(text: str, e: UnexpectedToken) -> tuple[int, str]:
    token = e.token
    expected = sorted(_spell(t) for t in (e.expected or ()) if not t.startswith("_"))
    expecting = "{" + ", ".join(expected) + "}"
    is_eof = token.type == "$END"
    if is_eof:
        offset = len(text)
        shown = "<EOF>"
    else:
        offset = token.start_pos
        shown = str(token)

    previous = _previous_significant_char(text, offset)
    if previous == ".":
        return offset, f"Syntax error: no viable alternative at input '.{'' if is_eof else shown}'"
    if is_eof and "RPAREN" in (e.expected or ()):
        return offset, "Syntax error: missing ')' at '<EOF>'"
    if previous == "" or is_eof:
        return offset, f"Syntax error: mismatched input '{shown}' expecting {expecting}"
    return offset, f"Syntax error: extraneous input '{shown}' expecting {expecting}"
