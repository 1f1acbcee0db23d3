"""
workspace_diagnostics.py - Diagnósticos de todos os documentos abertos

Propósito:
    Responder workspace/diagnostic com um relatório completo por documento
    aberto, cada um com sua versão.

LSP Feature:
    workspace/diagnostic → WorkspaceDiagnosticReport
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from lsprotocol.types import (
    Diagnostic,
    WorkspaceDiagnosticReport,
    WorkspaceFullDocumentDiagnosticReport,
)

from cells_lsp.documents import DocumentStore

logger = logging.getLogger(__name__)


def compute_workspace_diagnostics(
    store: DocumentStore,
    validate_func: Callable[[str], list[Diagnostic]],
) -> dict[str, tuple[int, list[Diagnostic]]]:
    """
    Gera diagnósticos para todos os documentos abertos.

    Args:
        store: Documentos abertos
        validate_func: Função que valida o texto de um documento

    Returns:
        Dict mapeando URI para (versão, diagnósticos)
    """
    diagnostics_map: dict[str, tuple[int, list[Diagnostic]]] = {}

    for uri in store.uris():
        document = store.snapshot(uri)
        if document is None:
            # fechado entre a listagem e o snapshot
            continue
        try:
            diagnostics_map[uri] = (document.version, validate_func(document.text))
        except Exception as e:
            logger.warning(f"Erro ao validar {uri}: {e}", exc_info=True)
            diagnostics_map[uri] = (document.version, [])

    logger.debug(f"Workspace diagnostics completo: {len(diagnostics_map)} documentos processados")
    return diagnostics_map


def build_workspace_diagnostic_report(
    uri: str,
    diagnostics: list[Diagnostic],
    version: Optional[int] = None,
) -> WorkspaceFullDocumentDiagnosticReport:
    """
    Constrói o relatório de um documento.

    Args:
        uri: URI do documento
        diagnostics: Lista de diagnósticos
        version: Versão do documento
    """
    return WorkspaceFullDocumentDiagnosticReport(
        uri=uri,
        version=version,
        items=diagnostics,
    )


def build_workspace_report(
    diagnostics_map: dict[str, tuple[int, list[Diagnostic]]],
) -> WorkspaceDiagnosticReport:
    items = [
        build_workspace_diagnostic_report(uri, diagnostics, version)
        for uri, (version, diagnostics) in sorted(diagnostics_map.items())
    ]
    return WorkspaceDiagnosticReport(items=items)
