"""
Testes para cells_lsp/references.py e cells_lsp/document_highlight.py

Cobertura:
- Nomes livres: todas as ocorrências livres do documento
- Variáveis de laço: apenas dentro da comprehension
- Nomes de função e macro não têm referências
- Recuperação pela palavra sob o cursor
- Highlights com o mesmo resultado das referências
"""

import pytest
from lsprotocol.types import DocumentHighlightKind, Position

from cells_lsp.cel import Environment
from cells_lsp.document_highlight import compute_document_highlight
from cells_lsp.references import compute_references, locate_occurrences

URI = "file:///tmp/regra.cel"


@pytest.fixture
def env():
    return Environment()


def _refs(text, character, env, line=0):
    return compute_references(text, URI, Position(line=line, character=character), env)


def _starts(locations):
    return [(loc.range.start.line, loc.range.start.character) for loc in locations]


class TestReferences:
    def test_free_name(self, env):
        locations = _refs("x + x + x", 4, env)
        assert _starts(locations) == [(0, 0), (0, 4), (0, 8)]
        assert all(loc.uri == URI for loc in locations)
        assert locations[0].range.end.character == 1

    def test_loop_variable(self, env):
        locations = _refs("[1,2,3].map(x, x * 2)", 15, env)
        assert _starts(locations) == [(0, 12), (0, 15)]

    def test_from_declaration(self, env):
        locations = _refs("[1,2,3].map(x, x * 2)", 12, env)
        assert _starts(locations) == [(0, 12), (0, 15)]

    def test_shadowed_free_name(self, env):
        """O x livre não inclui o x da macro."""
        assert _starts(_refs("x + [1].map(x, x)", 0, env)) == [(0, 0)]

    def test_multiline(self, env):
        locations = _refs("a +\n  a", 2, env, line=1)
        assert _starts(locations) == [(0, 0), (1, 2)]

    def test_function_name(self, env):
        assert _refs("size(x)", 1, env) is None

    def test_macro_name(self, env):
        assert _refs("[1].all(x, x)", 5, env) is None

    def test_word_after_cursor(self, env):
        """Cursor logo após o nome ainda encontra o identificador."""
        assert _starts(_refs("foo + foo", 3, env)) == [(0, 0), (0, 6)]

    def test_nothing(self, env):
        assert _refs("1 + 2", 2, env) is None

    def test_parse_error(self, env):
        assert _refs("x +", 0, env) is None

    def test_empty(self, env):
        assert _refs("", 0, env) is None

    def test_past_end(self, env):
        assert _refs("x", 1, env) is None


def test_locate_occurrences_target(env):
    found = locate_occurrences("y * y", Position(line=0, character=0), env)
    assert found.target.name == "y"
    assert [s.start for s in found.spans] == [0, 4]


class TestDocumentHighlight:
    def test_highlights(self, env):
        highlights = compute_document_highlight("a + a", Position(line=0, character=0), env)
        assert len(highlights) == 2
        assert all(h.kind == DocumentHighlightKind.Text for h in highlights)
        assert [h.range.start.character for h in highlights] == [0, 4]

    def test_no_highlight(self, env):
        assert compute_document_highlight("size(a)", Position(line=0, character=0), env) is None
