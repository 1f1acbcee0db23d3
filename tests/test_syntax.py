"""
Testes para cells_lsp/syntax.py

Cobertura:
- walk: pré-ordem e variáveis de laço visíveis por nó
- smallest_enclosing: nó mais justo sob o offset
- resolve_scope / occurrences: topo vs variável de laço, sombreamento,
  nas formas expandida (Comprehension) e de chamada (expand_macros=False)
- identifier_at: uso, declaração e nome de função
- identifier_near: recuperação pela palavra sob o cursor
- declaration_span sem registro de macro (localização textual)
"""

import pytest

from cells_lsp.cel import Environment, ParserOptions
from cells_lsp.cel.ast import Comprehension, Ident, Select
from cells_lsp.positions import PositionIndex
from cells_lsp.syntax import (
    ByteSpan,
    LoopVariable,
    TopLevel,
    identifier_at,
    identifier_near,
    occurrences,
    resolve_scope,
    smallest_enclosing,
    walk,
)


def parse(text, options=None):
    ast, issues = Environment(options=options).parse(text)
    assert ast is not None, issues
    return ast, PositionIndex(text)


class TestWalk:
    def test_visits_every_identifier(self):
        ast, _ = parse("a + b * c")
        names = [v.node.name for v in walk(ast) if isinstance(v.node, Ident)]
        assert names == ["a", "b", "c"]

    def test_binders_inside_comprehension(self):
        """Dentro do predicado, x está ligado à comprehension."""
        ast, _ = parse("[1, 2].all(x, x > 0)")
        bound = [
            v for v in walk(ast)
            if isinstance(v.node, Ident) and v.node.name == "x"
        ]
        assert len(bound) == 1
        assert isinstance(bound[0].binders["x"], Comprehension)

    def test_iter_range_outside_scope(self):
        """O alvo da macro não enxerga a própria variável de laço."""
        ast, _ = parse("x.all(x, x)")
        visits = [v for v in walk(ast) if isinstance(v.node, Ident) and v.node.name == "x"]
        free = [v for v in visits if "x" not in v.binders]
        assert len(free) == 1


class TestSmallestEnclosing:
    def test_select_field(self):
        ast, index = parse("a.b.c")
        visit = smallest_enclosing(ast, index, 2)
        assert isinstance(visit.node, Select)
        assert visit.node.field == "b"

    def test_no_node(self):
        ast, index = parse("a  + b")
        assert smallest_enclosing(ast, index, 1) is None


SHAPES = pytest.mark.parametrize(
    "options",
    [ParserOptions(), ParserOptions(expand_macros=False)],
    ids=["expandida", "chamada"],
)


class TestOccurrences:
    @SHAPES
    def test_loop_variable(self, options):
        """Declaração e uso da variável de laço."""
        text = "[1,2,3].map(x, x * 2)"
        ast, index = parse(text, options)
        target = identifier_at(ast, index, 15)
        assert target.name == "x"
        assert isinstance(target.scope, LoopVariable)
        assert target.scope.macro_name == "map"
        spans = occurrences(ast, index, target.scope, "x")
        assert spans == [ByteSpan(12, 13), ByteSpan(15, 16)]

    @SHAPES
    def test_top_level_excludes_shadowed(self, options):
        """x livre não inclui o x ligado pela macro."""
        text = "x + [1].map(x, x)"
        ast, index = parse(text, options)
        target = identifier_at(ast, index, 0)
        assert target.scope == TopLevel()
        assert occurrences(ast, index, TopLevel(), "x") == [ByteSpan(0, 1)]

    @SHAPES
    def test_shadowed_loop_variable(self, options):
        """Comprehensions aninhadas com o mesmo nome não se misturam."""
        text = "[1].all(x, [2].all(x, x > 0))"
        ast, index = parse(text, options)
        inner = identifier_at(ast, index, text.rindex("x"))
        spans = occurrences(ast, index, inner.scope, "x")
        assert spans == [ByteSpan(19, 20), ByteSpan(22, 23)]

    @SHAPES
    def test_nested_iteration_range(self, options):
        """O alvo da macro interna pertence ao escopo da externa."""
        text = "[1].map(x, [x].map(x, x)) + x"
        ast, index = parse(text, options)
        outer = identifier_at(ast, index, 12)
        inner = identifier_at(ast, index, 22)
        assert outer.scope != inner.scope
        assert [s.start for s in occurrences(ast, index, outer.scope, "x")] == [8, 12]
        assert [s.start for s in occurrences(ast, index, inner.scope, "x")] == [19, 22]
        assert [s.start for s in occurrences(ast, index, TopLevel(), "x")] == [28]

    @SHAPES
    def test_declaration_resolves_to_own_scope(self, options):
        text = "[1].exists(y, y == 1)"
        ast, index = parse(text, options)
        declaration = identifier_at(ast, index, 11)
        assert declaration.name == "y"
        assert declaration.scope == identifier_at(ast, index, 14).scope
        assert declaration.scope.macro_name == "exists"

    def test_top_level_repeated(self):
        ast, index = parse("x + x + x")
        assert [s.start for s in occurrences(ast, index, TopLevel(), "x")] == [0, 4, 8]

    def test_multibyte_offsets(self):
        """Offsets são em bytes: o literal acentuado desloca o identificador."""
        text = '"é" + x'
        ast, index = parse(text)
        assert occurrences(ast, index, TopLevel(), "x") == [ByteSpan(7, 8)]


class TestIdentifierAt:
    def test_declaration(self):
        ast, index = parse("[1].exists(y, y == 1)")
        target = identifier_at(ast, index, 11)
        assert target.name == "y"
        assert isinstance(target.scope, LoopVariable)
        assert target.scope.macro_name == "exists"

    def test_function_name(self):
        ast, index = parse('size("abc")')
        target = identifier_at(ast, index, 1)
        assert target.name == "size"
        assert target.is_function is True

    def test_macro_name(self):
        ast, index = parse("[1].map(x, x)")
        target = identifier_at(ast, index, 5)
        assert target.name == "map"
        assert target.is_function is True

    def test_nothing_under_cursor(self):
        ast, index = parse("1 + 2")
        assert identifier_at(ast, index, 1) is None

    def test_resolve_scope_of_use(self):
        ast, index = parse("[1].all(z, z > 0)")
        target = identifier_at(ast, index, 11)
        assert resolve_scope(ast, target.node_id, "z") == target.scope


class TestIdentifierNear:
    def test_cursor_after_word(self):
        """Cursor logo após o identificador recupera o nome pela palavra."""
        ast, index = parse("foo + 1")
        assert identifier_at(ast, index, 3) is None
        target = identifier_near(ast, index, 3)
        assert target.name == "foo"
        assert target.span == ByteSpan(0, 3)

    def test_picks_nearest(self):
        ast, index = parse("a + a")
        target = identifier_near(ast, index, 5)
        assert target.span == ByteSpan(4, 5)

    def test_no_word(self):
        ast, index = parse("a  + b")
        assert identifier_near(ast, index, 2) is None


@pytest.mark.parametrize("text", ["[1].all(x, x > 0)", "[1].all( x , x > 0)"])
def test_declaration_without_macro_tracking(text):
    """Sem macro_calls, a declaração é localizada no texto após o alvo."""
    ast, index = parse(text, ParserOptions(track_macro_calls=False))
    use = text.rindex("x")
    target = identifier_at(ast, index, use)
    spans = occurrences(ast, index, target.scope, "x")
    assert len(spans) == 2
    assert text[spans[0].start] == "x"
    assert spans[0].start < spans[1].start == use
