"""
formatting.py - Formatação canônica do documento (textDocument/formatting)

Propósito:
    Reescrever a expressão na forma canônica produzida pelo unparser,
    preservando os comentários que podem ser recolocados com segurança.

Notas de implementação:
    - O parser descarta comentários: linhas de comentário/branco antes e
      depois da expressão são separadas e recolocadas intactas
    - Um comentário no fim da última linha da expressão é mantido
    - Comentários no meio da expressão (linha própria ou fim de linha que
      não seja a última) tornam a formatação insegura: o documento fica
      como está
    - Comentários são localizados pelo lexer da gramática, então `//`
      dentro de strings (inclusive com aspas triplas) não conta
    - Resultado: um único TextEdit cobrindo o documento inteiro, ou None
      quando nada muda ou o documento não passa no parse
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from lsprotocol.types import Position, Range, TextEdit

from cells_lsp.cel import Environment, UnparseError
from cells_lsp.cel.ast import OffsetRange
from cells_lsp.positions import PositionIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommentSplit:
    """
    Documento separado em comentários e expressão.

    Attributes:
        leading: Linhas de comentário/branco antes da expressão (com "\\n" final)
        expr: Corpo da expressão, sem comentários
        trailing: Comentário da última linha e linhas finais de comentário
    """

    leading: str
    expr: str
    trailing: str


def split_comments(content: str, comments: list[OffsetRange]) -> Optional[CommentSplit]:
    """
    Separa comentários e expressão.

    Args:
        content: Texto do documento
        comments: Faixas (em runes) dos comentários `//`

    Returns:
        CommentSplit, ou None se houver comentários intercalados na expressão
    """
    lines = content.split("\n")
    line_starts = []
    offset = 0
    for line in lines:
        line_starts.append(offset)
        offset += len(line) + 1

    # coluna do comentário em cada linha (no máximo um: vai até o fim da linha)
    comment_column: dict[int, int] = {}
    line_idx = 0
    for comment in comments:
        while line_idx + 1 < len(line_starts) and line_starts[line_idx + 1] <= comment.start:
            line_idx += 1
        comment_column[line_idx] = comment.start - line_starts[line_idx]

    def is_comment_or_blank(i: int) -> bool:
        stripped = lines[i].strip()
        if not stripped:
            return True
        column = comment_column.get(i)
        return column is not None and not lines[i][:column].strip()

    lead_end = 0
    while lead_end < len(lines) and is_comment_or_blank(lead_end):
        lead_end += 1

    trail_start = len(lines)
    while trail_start > lead_end and is_comment_or_blank(trail_start - 1):
        trail_start -= 1

    expr_lines = lines[lead_end:trail_start]
    for i in range(lead_end, trail_start - 1):
        if i in comment_column:
            return None

    leading = "\n".join(lines[:lead_end]) + "\n" if lead_end > 0 else ""

    trailing = ""
    last = trail_start - 1
    if expr_lines and last in comment_column:
        column = comment_column[last]
        code, comment = lines[last][:column], lines[last][column:]
        expr_lines[-1] = code.rstrip(" \t")
        trailing = " " + comment.strip()

    expr = "\n".join(expr_lines)

    if trail_start < len(lines):
        joined = "\n".join(lines[trail_start:])
        if joined.strip():
            trailing += "\n" + joined

    return CommentSplit(leading, expr, trailing)


def format_source(content: str, env: Environment) -> Optional[str]:
    """
    Formata um documento.

    Returns:
        Texto formatado (igual ao original quando há comentários
        intercalados), ou None se a expressão não passar no parse
    """
    split = split_comments(content, env.comments(content))
    if split is None:
        logger.debug("Formatação ignorada: comentários intercalados na expressão")
        return content

    ast, _issues = env.parse(split.expr)
    if ast is None:
        return None
    try:
        formatted = env.unparse(ast)
    except UnparseError as e:
        logger.warning(f"Unparse falhou: {e}")
        return None

    result = split.leading + formatted + split.trailing
    if content.endswith("\n") and not result.endswith("\n"):
        result += "\n"
    return result


def compute_formatting(content: str, env: Environment) -> Optional[list[TextEdit]]:
    """
    Computa as edições de formatação.

    Returns:
        Lista com um TextEdit que substitui o documento inteiro, ou None
        quando nada muda ou o documento não pode ser formatado
    """
    if not content.strip():
        return None
    formatted = format_source(content, env)
    if formatted is None or formatted == content:
        return None
    end = PositionIndex(content).end_position()
    return [
        TextEdit(
            range=Range(start=Position(line=0, character=0), end=end),
            new_text=formatted,
        )
    ]
