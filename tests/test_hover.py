"""
Testes para cells_lsp/hover.py

Cobertura:
- Funções, operadores, conversões de tipo e macros
- Literais true / false / null
- Faixa do hover e escolha do elemento mais interno
- Casos sem hover: índice, fora do texto, erro de parse
"""

import pytest
from lsprotocol.types import MarkupKind, Position, Range

from cells_lsp.cel import Environment
from cells_lsp.cel.declarations import Doc
from cells_lsp.hover import compute_hover, format_doc, function_hover, macro_hover


@pytest.fixture
def env():
    return Environment()


def _hover_text(text, character, env, line=0):
    hover = compute_hover(text, Position(line=line, character=character), env)
    assert hover is not None
    assert hover.contents.kind == MarkupKind.Markdown
    return hover.contents.value


class TestComputeHover:
    def test_function(self, env):
        value = _hover_text('size("abc")', 1, env)
        assert value.startswith("`size`")
        assert "**Overloads**:" in value
        assert "- `size(string) -> int`" in value

    def test_function_range(self, env):
        hover = compute_hover('size("abc")', Position(line=0, character=2), env)
        assert hover.range == Range(
            start=Position(line=0, character=0),
            end=Position(line=0, character=4),
        )

    def test_operator(self, env):
        value = _hover_text("1 + 2", 2, env)
        assert value.startswith("**Operator**: `+`")
        assert "- `int + int -> int`" in value

    def test_conditional_operator(self, env):
        value = _hover_text("true ? 1 : 2", 5, env)
        assert value.startswith("**Operator**: `?`")

    def test_type_conversion(self, env):
        value = _hover_text('int("1")', 0, env)
        assert value.startswith("**Type**: `int`")

    def test_macro(self, env):
        value = _hover_text("[1].map(x, x)", 5, env)
        assert value.startswith("**Macro**: `map`")
        assert "**Examples**:" in value
        assert "```cel" in value

    def test_literals(self, env):
        assert "boolean **true** literal" in _hover_text("true || false", 1, env)
        assert "boolean **false** literal" in _hover_text("true || false", 10, env)
        assert "null_type" in _hover_text("null", 0, env)

    def test_member_call(self, env):
        value = _hover_text('"abc".contains("b")', 8, env)
        assert value.startswith("`contains`")
        assert "string.contains(string) -> bool" in value

    def test_second_line(self, env):
        value = _hover_text("1 +\n  size([])", 3, env, line=1)
        assert value.startswith("`size`")

    def test_after_astral_character(self, env):
        """Coluna UTF-16 após um emoji."""
        value = _hover_text('"😀" + "a"', 5, env)
        assert value.startswith("**Operator**: `+`")


class TestNoHover:
    def test_index_operator(self, env):
        assert compute_hover("[1][0]", Position(line=0, character=3), env) is None

    def test_whitespace(self, env):
        assert compute_hover("1 + 2", Position(line=0, character=1), env) is None

    def test_past_end(self, env):
        assert compute_hover("1 + 2", Position(line=0, character=5), env) is None
        assert compute_hover("1 + 2", Position(line=3, character=0), env) is None

    def test_parse_error(self, env):
        assert compute_hover("1 + ", Position(line=0, character=2), env) is None

    def test_empty(self, env):
        assert compute_hover("", Position(line=0, character=0), env) is None


class TestFormatting:
    def test_format_doc_examples(self):
        doc = Doc(name="m", description="desc", children=(Doc(description="[1].m(x, x)"),))
        assert format_doc(doc, "**Macro**: ") == (
            "**Macro**: `m`\n\ndesc\n\n**Examples**:\n```cel\n[1].m(x, x)\n```"
        )

    def test_unknown_function(self, env):
        assert function_hover("nope", env) == ""

    def test_unknown_macro(self, env):
        assert macro_hover("nope", env) == "`nope` — macro"
