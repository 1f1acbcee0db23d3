"""
Testes para cells_lsp/completion.py

Cobertura:
- Contexto de membro (após "."): métodos compatíveis com o receptor
- Contexto após operador: filtragem pelo tipo esperado
- Contexto geral: funções globais, macros e palavras-chave
- Formato dos itens (kind, detail, snippet)
"""

import pytest
from lsprotocol.types import CompletionItemKind, InsertTextFormat, Position

from cells_lsp.cel import Environment
from cells_lsp.cel import types as t
from cells_lsp.completion import (
    TRIGGER_CHARACTERS,
    compute_completion,
    expected_type_after_operator,
    receiver_type,
    type_matches,
)


@pytest.fixture
def env():
    return Environment()


def _labels(text, env, character=None):
    character = len(text) if character is None else character
    result = compute_completion(text, Position(line=0, character=character), env)
    assert result.is_incomplete is False
    return [item.label for item in result.items], result.items


def test_trigger_characters():
    assert TRIGGER_CHARACTERS == ["."]


class TestMemberCompletion:
    def test_string_receiver(self, env):
        """Após uma string, apenas métodos de string."""
        labels, items = _labels('"abc".', env)
        assert "contains" in labels
        assert "startsWith" in labels
        assert "size" in labels
        assert "getHours" not in labels
        assert labels == sorted(labels)
        assert all(item.kind == CompletionItemKind.Method for item in items)

    def test_member_detail(self, env):
        _labels_, items = _labels('"abc".', env)
        contains = next(i for i in items if i.label == "contains")
        assert contains.detail == "string.contains(string) -> bool"

    def test_unknown_receiver(self, env):
        """Receptor que não compila → todos os métodos."""
        labels, _ = _labels("foo.", env)
        assert "getHours" in labels
        assert "contains" in labels

    def test_no_globals_after_dot(self, env):
        labels, _ = _labels("[1, 2].", env)
        assert "size" in labels
        assert "true" not in labels
        assert "int" not in labels


class TestGlobalCompletion:
    def test_empty_document(self, env):
        labels, items = _labels("", env)
        for expected in ("size", "int", "matches", "has", "map", "true", "null"):
            assert expected in labels
        assert not any(label.startswith("_") or label.startswith("@") for label in labels)
        assert "contains" not in labels

    def test_after_arithmetic_operator(self, env):
        """Após `1 +`, só o que produz int."""
        labels, _ = _labels("1 + ", env)
        assert "int" in labels
        assert "size" in labels
        assert "string" not in labels
        assert "true" not in labels

    def test_after_logical_operator(self, env):
        labels, _ = _labels("true && ", env)
        assert "true" in labels
        assert "false" in labels
        assert "null" not in labels
        assert "matches" in labels
        assert "size" not in labels

    def test_macros_always_offered(self, env):
        labels, _ = _labels("1 + ", env)
        assert "map" in labels
        assert "has" in labels

    def test_document_not_open(self, env):
        result = compute_completion(None, Position(line=0, character=0), env)
        assert any(item.label == "size" for item in result.items)

    def test_invalid_position(self, env):
        result = compute_completion("1", Position(line=5, character=0), env)
        assert any(item.label == "true" for item in result.items)


class TestItems:
    def test_function_snippet(self, env):
        _, items = _labels("", env)
        size = next(i for i in items if i.label == "size")
        assert size.kind == CompletionItemKind.Function
        assert size.insert_text == "size($1)"
        assert size.insert_text_format == InsertTextFormat.Snippet
        assert size.detail == "size(string) -> int"
        assert "compute the size" in size.documentation.value

    def test_macro_detail(self, env):
        _, items = _labels("", env)
        macro = next(i for i in items if i.label == "exists_one")
        assert macro.detail == "macro"

    def test_keyword_detail(self, env):
        _, items = _labels("", env)
        null = next(i for i in items if i.label == "null")
        assert null.kind == CompletionItemKind.Keyword
        assert null.detail == "null_type"


class TestHelpers:
    def test_receiver_type(self, env):
        assert receiver_type('"a" + "b"  ', env) == t.STRING
        assert receiver_type("", env) is None
        assert receiver_type("1 +", env) is None

    def test_expected_type(self, env):
        assert expected_type_after_operator("1 +", env) == t.INT
        assert expected_type_after_operator("x ==", env) is None
        assert expected_type_after_operator("1", env) is None

    def test_expected_type_comparison_is_ambiguous(self, env):
        """`1 <` aceita int, uint e double à direita."""
        assert expected_type_after_operator("1 <", env) is None

    def test_type_matches(self):
        assert type_matches(None, t.STRING)
        assert type_matches(t.INT, t.DYN)
        assert not type_matches(t.INT, t.STRING)
