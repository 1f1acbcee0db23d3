"""
document_highlight.py - Destaque das ocorrências sob o cursor (textDocument/documentHighlight)
"""

from __future__ import annotations

import logging
from typing import Optional

from lsprotocol.types import DocumentHighlight, DocumentHighlightKind, Position

from cells_lsp.cel import Environment
from cells_lsp.references import locate_occurrences

logger = logging.getLogger(__name__)


def compute_document_highlight(
    source: str, position: Position, env: Environment
) -> Optional[list[DocumentHighlight]]:
    """Mesma resolução das referências; cada ocorrência vira um destaque de texto."""
    found = locate_occurrences(source, position, env)
    if found is None:
        return None
    highlights = []
    for span in found.spans:
        r = found.index.range_of_bytes(span.start, span.stop)
        if r is not None:
            highlights.append(DocumentHighlight(range=r, kind=DocumentHighlightKind.Text))
    return highlights
