"""
Testes para cells_lsp/rename.py

Cobertura:
- Rename de nome livre (todas as ocorrências livres)
- Rename de variável de laço (somente dentro da comprehension)
- Sombreamento entre nome livre e variável de laço
- Validação do novo nome (vazio, inválido, reservado)
- prepareRename: faixa do nome; funções e literais não renomeáveis
"""

import pytest
from lsprotocol.types import Position, Range

from cells_lsp.cel import Environment
from cells_lsp.jsonrpc import ErrorCodes, JsonRpcError
from cells_lsp.rename import RESERVED_WORDS, compute_prepare_rename, compute_rename, validate_new_name

URI = "file:///tmp/regra.cel"


@pytest.fixture
def env():
    return Environment()


def _rename(text, character, new_name, env):
    return compute_rename(text, URI, Position(line=0, character=character), new_name, env)


def _edit_starts(edit):
    return [e.range.start.character for e in edit.changes[URI]]


class TestComputeRename:
    def test_free_name(self, env):
        edit = _rename("x + x + x", 0, "total", env)
        assert _edit_starts(edit) == [0, 4, 8]
        assert all(e.new_text == "total" for e in edit.changes[URI])
        assert all(e.range.end.character - e.range.start.character == 1 for e in edit.changes[URI])

    def test_loop_variable(self, env):
        edit = _rename("x + [1].map(x, x)", 15, "item", env)
        assert _edit_starts(edit) == [12, 15]

    def test_free_name_ignores_loop_variable(self, env):
        edit = _rename("x + [1].map(x, x)", 0, "item", env)
        assert _edit_starts(edit) == [0]

    def test_function_name(self, env):
        assert _rename("size(x)", 1, "len", env) is None

    def test_nothing_under_cursor(self, env):
        assert _rename("1 + 2", 0, "y", env) is None

    def test_invalid_name_fails_first(self, env):
        """Nome inválido falha mesmo sem nada sob o cursor."""
        with pytest.raises(JsonRpcError):
            _rename("1 + 2", 0, "1x", env)


class TestValidateNewName:
    @pytest.mark.parametrize(
        "name, message",
        [
            ("", "new name cannot be empty"),
            ("1abc", "'1abc' is not a valid identifier"),
            ("a-b", "'a-b' is not a valid identifier"),
            ("ação", "'ação' is not a valid identifier"),
            ("true", "'true' is a reserved word"),
            ("in", "'in' is a reserved word"),
        ],
    )
    def test_rejected(self, name, message):
        with pytest.raises(JsonRpcError) as exc:
            validate_new_name(name)
        assert exc.value.code == ErrorCodes.INVALID_PARAMS
        assert exc.value.message == message

    @pytest.mark.parametrize("name", ["x", "_tmp", "value2", "camelCase"])
    def test_accepted(self, name):
        validate_new_name(name)

    def test_reserved_words_include_literals(self):
        assert {"true", "false", "null"} <= RESERVED_WORDS


class TestPrepareRename:
    def test_free_name(self, env):
        result = compute_prepare_rename("abc + 1", Position(line=0, character=1), env)
        assert result == Range(
            start=Position(line=0, character=0),
            end=Position(line=0, character=3),
        )

    def test_declaration(self, env):
        result = compute_prepare_rename("[1].map(y, y)", Position(line=0, character=8), env)
        assert result.start.character == 8
        assert result.end.character == 9

    def test_function(self, env):
        assert compute_prepare_rename("size(x)", Position(line=0, character=0), env) is None

    def test_literal(self, env):
        assert compute_prepare_rename("1 + x", Position(line=0, character=0), env) is None

    def test_parse_error(self, env):
        assert compute_prepare_rename("x +", Position(line=0, character=0), env) is None
