"""
Testes para cells_lsp/diagnostics.py

Cobertura:
- Erros de parse (Error) e de checagem (Warning)
- Faixa do diagnóstico: início da issue até o fim da linha
- Colunas UTF-16 com caracteres fora do BMP
- clean_message: nomes internos → símbolos
- Relatório do pull e diagnóstico de erro interno
"""

import pytest
from lsprotocol.types import DiagnosticSeverity, Position

from cells_lsp.cel import Environment
from cells_lsp.diagnostics import (
    SOURCE,
    build_document_report,
    clean_message,
    compute_diagnostics,
    internal_error_diagnostic,
)


@pytest.fixture
def env():
    return Environment()


class TestComputeDiagnostics:
    def test_valid_expression(self, env):
        assert compute_diagnostics("1 + 2", env) == []

    @pytest.mark.parametrize("text", ["", "   ", "\n\n"])
    def test_empty_document(self, env, text):
        """Documento vazio não gera diagnósticos."""
        assert compute_diagnostics(text, env) == []

    def test_type_error_is_warning(self, env):
        diagnostics = compute_diagnostics('1 + "hello"', env)
        assert len(diagnostics) == 1
        diag = diagnostics[0]
        assert diag.severity == DiagnosticSeverity.Warning
        assert "'+'" in diag.message
        assert diag.message == "found no matching overload for '+' applied to '(int, string)'"
        assert diag.source == SOURCE
        assert diag.range.start == Position(line=0, character=2)
        assert diag.range.end == Position(line=0, character=11)

    def test_syntax_error_is_error(self, env):
        diagnostics = compute_diagnostics("1 +", env)
        assert len(diagnostics) == 1
        assert diagnostics[0].severity == DiagnosticSeverity.Error
        assert diagnostics[0].range.start == Position(line=0, character=3)
        assert diagnostics[0].range.end == Position(line=0, character=3)

    def test_second_line(self, env):
        diagnostics = compute_diagnostics("true &&\n  y", env)
        assert diagnostics[0].range.start == Position(line=1, character=2)
        assert diagnostics[0].range.end == Position(line=1, character=3)

    def test_utf16_column(self, env):
        """Emoji conta 2 unidades UTF-16 antes do identificador."""
        diagnostics = compute_diagnostics('"😀" + y', env)
        assert diagnostics[0].range.start == Position(line=0, character=7)

    def test_multiple_issues(self, env):
        diagnostics = compute_diagnostics("a + b", env)
        assert [d.range.start.character for d in diagnostics] == [0, 4]


class TestCleanMessage:
    @pytest.mark.parametrize(
        "raw, cleaned",
        [
            ("found no matching overload for '_+_'", "found no matching overload for '+'"),
            ("found no matching overload for '!_'", "found no matching overload for '!'"),
            ("'@in' applied", "'in' applied"),
            ("overload for '_?_:_'", "overload for '_?_:_'"),
            ("undeclared reference to 'size'", "undeclared reference to 'size'"),
        ],
    )
    def test_operator_names(self, raw, cleaned):
        assert clean_message(raw) == cleaned


def test_document_report(env):
    diagnostics = compute_diagnostics("y", env)
    report = build_document_report(diagnostics)
    assert report.kind == "full"
    assert report.items == diagnostics


def test_internal_error_diagnostic():
    diag = internal_error_diagnostic(RuntimeError("boom"))
    assert diag.severity == DiagnosticSeverity.Error
    assert "boom" in diag.message
