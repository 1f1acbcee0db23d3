"""
diagnostics.py - Conversão de issues CEL em diagnósticos LSP

Propósito:
    Fazer parse e checagem de um documento e converter as issues em
    Diagnostic do protocolo, para push (publishDiagnostics) e pull
    (textDocument/diagnostic).

Componentes principais:
    - compute_diagnostics: texto → lista de Diagnostic
    - issue_to_diagnostic: CelIssue → Diagnostic
    - clean_message: nomes internos de operadores → símbolos
    - build_document_report: relatório completo para o pull

Notas de implementação:
    - Erros de parse têm severidade Error; erros de checagem, Warning
    - Issues CEL têm linha 1-based e coluna 0-based em runes, sem posição
      final: o diagnóstico termina no fim da linha
    - Coordenadas do protocolo são convertidas para UTF-16 via PositionIndex
    - Documento vazio (ou só espaços) não gera diagnósticos

Dependências críticas:
    - lsprotocol.types: Diagnostic, DiagnosticSeverity, relatórios de pull
"""

from __future__ import annotations

import logging
import re

from lsprotocol.types import (
    Diagnostic,
    DiagnosticSeverity,
    Position,
    Range,
    RelatedFullDocumentDiagnosticReport,
)

from cells_lsp.cel import CelIssue, Environment
from cells_lsp.cel.declarations import find_reverse
from cells_lsp.positions import INVALID, PositionIndex

logger = logging.getLogger(__name__)

SOURCE = "cells"

# Nomes entre aspas simples: '_+_', '-_', '!_', '@in'
_QUOTED_NAME = re.compile(r"'([^']+)'")


def clean_message(message: str) -> str:
    """
    Substitui nomes internos de operadores pelo símbolo exibido ao usuário.

    Operadores sem símbolo próprio (condicional, índice) ficam intactos.
    """

    def replace(match: re.Match) -> str:
        display = find_reverse(match.group(1))
        if display:
            return f"'{display}'"
        return match.group(0)

    return _QUOTED_NAME.sub(replace, message)


def issue_to_diagnostic(
    index: PositionIndex, issue: CelIssue, severity: DiagnosticSeverity
) -> Diagnostic:
    """
    Converte uma issue CEL em Diagnostic.

    Args:
        index: Índice de posições do documento
        issue: Issue com linha 1-based e coluna 0-based (runes)
        severity: Severidade do diagnóstico

    Returns:
        Diagnostic do início da issue até o fim da linha
    """
    line = max(issue.line - 1, 0)
    if line >= index.line_count:
        line = index.line_count - 1
    start_char = _utf16_column(index, line, max(issue.column, 0))
    end_char = max(index.line_end_column(line), start_char)
    return Diagnostic(
        range=Range(
            start=Position(line=line, character=start_char),
            end=Position(line=line, character=end_char),
        ),
        severity=severity,
        source=SOURCE,
        message=clean_message(issue.message),
    )


def _utf16_column(index: PositionIndex, line: int, rune_column: int) -> int:
    # coluna em runes → coluna UTF-16 na mesma linha
    start = index.rune_of(line, 0)
    position = index.line_column_of_rune(start + rune_column)
    if start == INVALID or position is None or position[0] != line:
        return max(index.line_end_column(line), 0)
    return position[1]


def compute_diagnostics(source: str, env: Environment) -> list[Diagnostic]:
    """
    Faz parse e checagem do documento.

    Args:
        source: Texto do documento
        env: Ambiente CEL

    Returns:
        Diagnósticos de parse (Error) ou, se o parse passar, de checagem
        (Warning). Lista vazia para documento sem erros ou vazio.
    """
    if not source.strip():
        return []

    index = PositionIndex(source)
    ast, parse_issues = env.parse(source)
    if ast is None:
        return [issue_to_diagnostic(index, i, DiagnosticSeverity.Error) for i in parse_issues]

    _checked, check_issues = env.check(ast)
    return [issue_to_diagnostic(index, i, DiagnosticSeverity.Warning) for i in check_issues]


def internal_error_diagnostic(error: Exception) -> Diagnostic:
    """Diagnóstico genérico publicado quando a análise falha inesperadamente."""
    return Diagnostic(
        range=Range(start=Position(line=0, character=0), end=Position(line=0, character=1)),
        severity=DiagnosticSeverity.Error,
        source=SOURCE,
        message=f"Erro interno do servidor: {error}",
    )


def build_document_report(diagnostics: list[Diagnostic]) -> RelatedFullDocumentDiagnosticReport:
    return RelatedFullDocumentDiagnosticReport(items=diagnostics)
