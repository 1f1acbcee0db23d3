"""
Testes para cells_lsp/cel (parser, checker, interpretador, unparser)

Cobertura:
- Parser: árvore, offsets, macros expandidas, literais, mensagens de erro
- Comentários localizados pelo lexer
- Checker: tipos de saída, referências não declaradas, overloads
- Interpretador: macros, absorção de erros, overflow, divisão por zero
- Unparser: precedência, macros restauradas, literais
"""

import pytest

from cells_lsp.cel import Environment, EvalError, ParserOptions, UnparseError, format_value
from cells_lsp.cel import types as t
from cells_lsp.cel.ast import Call, Comprehension, Literal, OffsetRange, Select
from cells_lsp.cel.interpreter import UInt


@pytest.fixture
def env():
    return Environment()


def _evaluate(env, text):
    checked, issues = env.compile(text)
    assert checked is not None, issues
    return env.evaluate(checked)


# --- parser ---


class TestParser:
    def test_operator_offsets(self, env):
        """O nó de operador aponta para o próprio símbolo."""
        ast, issues = env.parse("1 + 2")
        assert issues == []
        assert isinstance(ast.expr, Call)
        assert ast.expr.function == "_+_"
        assert ast.source_info.offset_range(ast.expr.id) == OffsetRange(2, 3)
        assert ast.source_info.extents[ast.expr.id] == OffsetRange(0, 5)

    def test_macro_expanded_and_recorded(self, env):
        ast, _ = env.parse("[1, 2].map(x, x * 2)")
        assert isinstance(ast.expr, Comprehension)
        record = ast.source_info.macro_calls[ast.expr.id]
        assert record.function == "map"
        assert ast.source_info.offset_range(record.id) == OffsetRange(7, 10)

    def test_macros_not_expanded(self):
        ast, _ = Environment(options=ParserOptions(expand_macros=False)).parse("[1].all(x, x)")
        assert isinstance(ast.expr, Call)
        assert ast.expr.function == "all"
        assert ast.source_info.macro_calls == {}

    def test_has_macro(self, env):
        ast, _ = env.parse("has(a.b)")
        assert isinstance(ast.expr, Select)
        assert ast.expr.test_only is True

    def test_has_requires_select(self, env):
        ast, issues = env.parse("has(a)")
        assert ast is None
        assert issues[0].message == "invalid argument to has() macro"

    def test_negative_literal_folded(self, env):
        ast, _ = env.parse("-9223372036854775808")
        assert isinstance(ast.expr, Literal)
        assert ast.expr.value == -(2**63)

    def test_int_overflow(self, env):
        ast, issues = env.parse("9223372036854775808")
        assert ast is None
        assert issues[0].message == "invalid int literal"

    @pytest.mark.parametrize(
        "text, value",
        [
            (r'"a\nb"', "a\nb"),
            (r'r"a\nb"', "a\\nb"),
            (r'"\x41é"', "Aé"),
            ("'''multi\nline'''", "multi\nline"),
            (r'b"\xff"', b"\xff"),
            ("0x1F", 31),
            ("3u", 3),
            ("1.5e2", 150.0),
        ],
    )
    def test_literals(self, env, text, value):
        ast, issues = env.parse(text)
        assert issues == []
        assert ast.expr.value == value

    def test_unknown_character(self, env):
        ast, issues = env.parse("1 # 2")
        assert ast is None
        assert issues[0].message == "Syntax error: token recognition error at: '#'"
        assert (issues[0].line, issues[0].column) == (1, 2)

    def test_incomplete_expression(self, env):
        """Erro no fim do texto é reportado na coluna do fim."""
        ast, issues = env.parse("1 +")
        assert ast is None
        assert issues[0].message.startswith("Syntax error: mismatched input '<EOF>'")
        assert (issues[0].line, issues[0].column) == (1, 3)

    def test_missing_paren(self, env):
        _, issues = env.parse("size(1")
        assert issues[0].message == "Syntax error: missing ')' at '<EOF>'"

    def test_error_on_second_line(self, env):
        _, issues = env.parse("1 +\n+ )")
        assert issues[0].line == 2

    def test_comments(self, env):
        """Comentários fora de strings; `//` dentro de string não conta."""
        text = '1 // um\n+ "//x" // dois'
        assert env.comments(text) == [OffsetRange(2, 7), OffsetRange(16, 23)]

    def test_comments_are_ignored_by_parser(self, env):
        ast, issues = env.parse("// topo\n1 // fim")
        assert issues == []
        assert ast.expr.value == 1


# --- checker ---


class TestChecker:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("1 + 2", "int"),
            ('size("abc")', "int"),
            ('"abc".size()', "int"),
            ("[1, 2, 3].map(x, x * 2)", "list(int)"),
            ("[1, 2].all(x, x > 0)", "bool"),
            ('{"a": 1}["a"]', "int"),
            ("true ? 1 : 2", "int"),
            ("has({'a': 1}.a)", "bool"),
        ],
    )
    def test_output_type(self, env, text, expected):
        checked, issues = env.compile(text)
        assert issues == []
        assert str(checked.output_type) == expected

    def test_no_matching_overload(self, env):
        checked, issues = env.compile('1 + "hello"')
        assert checked is None
        assert len(issues) == 1
        assert issues[0].message == "found no matching overload for '_+_' applied to '(int, string)'"
        assert issues[0].column == 2

    def test_undeclared_reference(self, env):
        _, issues = env.compile("y + 1")
        assert issues[0].message == "undeclared reference to 'y' (in container '')"

    def test_declared_variable(self):
        env = Environment({"x": t.INT})
        checked, issues = env.compile("x + 1")
        assert issues == []
        assert checked.output_type == t.INT

    def test_logical_operand(self, env):
        _, issues = env.compile("true && 1")
        assert issues[0].message == "expected type 'bool' but found 'int'"

    def test_issues_sorted(self, env):
        _, issues = env.compile("a + b")
        assert [i.column for i in issues] == [0, 4]

    def test_no_cascade(self, env):
        """Um operando com erro não gera erro de overload no operador."""
        _, issues = env.compile("y + 1")
        assert len(issues) == 1

    def test_issue_str(self, env):
        _, issues = env.compile("y")
        assert str(issues[0]) == "ERROR: <input>:1:1: undeclared reference to 'y' (in container '')"


# --- interpretador ---


class TestInterpreter:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("[1, 2, 3].map(x, x * 2)", [2, 4, 6]),
            ("[1, 2, 3].map(x, x > 1, x * 10)", [20, 30]),
            ("[1, 2, 3].filter(x, x > 1)", [2, 3]),
            ("[1, 2, 2].exists_one(i, i < 2)", True),
            ("[1, 2, 3].exists(i, i == 3)", True),
            ("[1, 2, 0].all(x, x > 0)", False),
            ("has({'a': 1}.a)", True),
            ('"abc".startsWith("a")', True),
            ("7 / 2", 3),
            ("-7 % 3", -1),
            ('"ab" + "cd"', "abcd"),
            ("1 in [1, 2]", True),
        ],
    )
    def test_evaluate(self, env, text, expected):
        assert _evaluate(env, text) == expected

    def test_division_by_zero(self, env):
        with pytest.raises(EvalError, match="division by zero"):
            _evaluate(env, "1 / 0")

    def test_overflow(self, env):
        with pytest.raises(EvalError, match="overflow"):
            _evaluate(env, "9223372036854775807 + 1")

    def test_or_absorbs_error(self, env):
        """|| com um lado verdadeiro absorve o erro do outro."""
        assert _evaluate(env, "1 / 0 == 1 || true") is True

    def test_uint(self, env):
        value = _evaluate(env, "1u + 2u")
        assert isinstance(value, UInt)
        assert format_value(value) == "3u"


def test_format_value():
    assert format_value({"a": [1, 2.5, None, True]}) == '{"a": [1, 2.5, null, true]}'
    assert format_value(b"hi") == 'b"hi"'


# --- unparser ---


class TestUnparser:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("1+2*3", "1 + 2 * 3"),
            ("(1+2)*3", "(1 + 2) * 3"),
            ("1-(2-3)", "1 - (2 - 3)"),
            ("(1-2)-3", "1 - 2 - 3"),
            ("[1,2].map(x,x*2)", "[1, 2].map(x, x * 2)"),
            ("has(a.b)", "has(a.b)"),
            ("'it\\'s'", '"it\'s"'),
            ("-(1)", "-(1)"),
            ("!true", "!true"),
            ("a?b:c", "a ? b : c"),
            ("{'k':[1,2]}", '{"k": [1, 2]}'),
            ("(a + b).size()", "(a + b).size()"),
            ("x[0]", "x[0]"),
        ],
    )
    def test_canonical_text(self, env, text, expected):
        ast, issues = env.parse(text)
        assert issues == []
        assert env.unparse(ast) == expected

    def test_idempotent(self, env):
        ast, _ = env.parse("[1,2].filter(x,x>1 && x<5)")
        once = env.unparse(ast)
        again, _ = env.parse(once)
        assert env.unparse(again) == once

    def test_untracked_comprehension(self):
        env = Environment(options=ParserOptions(track_macro_calls=False))
        ast, _ = env.parse("[1].all(x, x)")
        with pytest.raises(UnparseError):
            env.unparse(ast)
