"""
inlay_hints.py - Resultado da avaliação exibido inline

Propósito:
    Exibe "→ valor (tipo)" após a expressão quando ela passa no parse, na
    checagem e na avaliação sem variáveis.

Notas de implementação:
    - Um único hint, no fim do conteúdo (quebras de linha finais ignoradas)
    - Erros de parse, checagem ou avaliação → nenhum hint
    - range_ limita os hints às linhas visíveis
"""

from __future__ import annotations

import logging
from typing import Optional

from lsprotocol.types import InlayHint, InlayHintKind, Range

from cells_lsp.cel import Environment, EvalError, format_value
from cells_lsp.positions import PositionIndex

logger = logging.getLogger(__name__)


def compute_inlay_hints(source: str, env: Environment, range_: Optional[Range] = None) -> list[InlayHint]:
    """
    Computa inlay hints do documento.

    Args:
        source: Texto-fonte do documento
        env: Ambiente CEL
        range_: Range LSP opcional para limitar hints à área visível

    Returns:
        Lista com no máximo um InlayHint
    """
    if not source.strip():
        return []

    checked, issues = env.compile(source)
    if checked is None or issues:
        return []
    try:
        value = env.evaluate(checked)
    except EvalError as e:
        logger.debug(f"Avaliação sem hint: {e}")
        return []

    index = PositionIndex(source)
    content = source.rstrip("\n\r")
    position = index.position_of_byte(len(content.encode("utf-8")))
    if position is None:
        return []
    if range_ and (position.line < range_.start.line or position.line > range_.end.line):
        return []

    return [
        InlayHint(
            position=position,
            label=f"→ {format_value(value)} ({checked.output_type})",
            kind=InlayHintKind.Type,
            padding_left=True,
        )
    ]
