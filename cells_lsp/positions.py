"""
positions.py - Conversão entre coordenadas de texto

Propósito:
    Converter entre os três sistemas de coordenadas usados para o mesmo
    texto: offset em bytes UTF-8, offset em runes (code points, usado pelas
    faixas da árvore CEL) e (linha, coluna UTF-16) do protocolo LSP.

Componentes principais:
    - byte_offset_of / line_column_of / rune_offset_to_byte_offset
    - PositionIndex: tabelas pré-computadas por code point

Notas de implementação:
    - Entradas fora da faixa retornam sentinelas (-1 ou None), nunca
      exceções: posições vindas de um cliente desatualizado são comuns
    - Coluna UTF-16: 1 unidade para code points <= 0xFFFF, 2 acima
    - Uma coluna dentro de um par surrogate, ou além do fim da linha, é
      inválida; a coluna igual ao comprimento da linha é válida
    - Apenas "\\n" quebra linha

Dependências críticas:
    - lsprotocol.types: Position, Range
"""

from __future__ import annotations

import bisect
from typing import Optional

from lsprotocol import types

INVALID = -1


def _utf8_width(code: int) -> int:
    if code < 0x80:
        return 1
    if code < 0x800:
        return 2
    if code < 0x10000:
        return 3
    return 4


def _utf16_width(code: int) -> int:
    return 2 if code > 0xFFFF else 1


class PositionIndex:
    """
    Índice de posições de um texto.

    Uma varredura linear no construtor; consultas posteriores usam busca
    binária sobre as tabelas.
    """

    def __init__(self, text: str):
        self.text = text
        n = len(text)
        rune_bytes = [0] * (n + 1)
        utf16 = [0] * (n + 1)
        line_starts = [0]
        b = 0
        u = 0
        for i, ch in enumerate(text):
            code = ord(ch)
            b += _utf8_width(code)
            u += _utf16_width(code)
            rune_bytes[i + 1] = b
            utf16[i + 1] = u
            if ch == "\n":
                line_starts.append(i + 1)
        self._rune_bytes = rune_bytes
        self._utf16 = utf16
        self._line_starts = line_starts

    @property
    def byte_length(self) -> int:
        return self._rune_bytes[-1]

    @property
    def rune_length(self) -> int:
        return len(self.text)

    @property
    def line_count(self) -> int:
        return len(self._line_starts)

    def _line_end(self, line: int) -> int:
        """Índice de rune do fim da linha (posição do "\\n" ou fim do texto)."""
        if line + 1 < len(self._line_starts):
            return self._line_starts[line + 1] - 1
        return len(self.text)

    # --- runes <-> bytes ---------------------------------------------

    def rune_to_byte(self, rune: int) -> int:
        if rune < 0 or rune > len(self.text):
            return INVALID
        return self._rune_bytes[rune]

    def byte_to_rune(self, byte: int) -> int:
        """Offset em runes de um offset em bytes; -1 se não cair em fronteira de caractere."""
        if byte < 0 or byte > self.byte_length:
            return INVALID
        rune = bisect.bisect_left(self._rune_bytes, byte)
        if self._rune_bytes[rune] != byte:
            return INVALID
        return rune

    # --- linha/coluna UTF-16 <-> bytes ---------------------------------

    def rune_of(self, line: int, column: int) -> int:
        if line < 0 or column < 0 or line >= len(self._line_starts):
            return INVALID
        start = self._line_starts[line]
        end = self._line_end(line)
        target = self._utf16[start] + column
        rune = bisect.bisect_left(self._utf16, target, start, end + 1)
        if rune > end or self._utf16[rune] != target:
            return INVALID
        return rune

    def byte_offset(self, line: int, column: int) -> int:
        rune = self.rune_of(line, column)
        if rune == INVALID:
            return INVALID
        return self._rune_bytes[rune]

    def line_column_of_rune(self, rune: int) -> Optional[tuple[int, int]]:
        if rune < 0 or rune > len(self.text):
            return None
        line = bisect.bisect_right(self._line_starts, rune) - 1
        return line, self._utf16[rune] - self._utf16[self._line_starts[line]]

    def line_column(self, byte: int) -> Optional[tuple[int, int]]:
        rune = self.byte_to_rune(byte)
        if rune == INVALID:
            return None
        return self.line_column_of_rune(rune)

    # --- tipos do protocolo ------------------------------------------

    def offset_at(self, position: types.Position) -> int:
        return self.byte_offset(position.line, position.character)

    def position_of_byte(self, byte: int) -> Optional[types.Position]:
        lc = self.line_column(byte)
        if lc is None:
            return None
        return types.Position(line=lc[0], character=lc[1])

    def position_of_rune(self, rune: int) -> Optional[types.Position]:
        return self.position_of_byte(self.rune_to_byte(rune))

    def range_of_bytes(self, start: int, stop: int) -> Optional[types.Range]:
        begin = self.position_of_byte(start)
        end = self.position_of_byte(stop)
        if begin is None or end is None:
            return None
        return types.Range(start=begin, end=end)

    def range_of_runes(self, start: int, stop: int) -> Optional[types.Range]:
        return self.range_of_bytes(self.rune_to_byte(start), self.rune_to_byte(stop))

    def end_position(self) -> types.Position:
        line = len(self._line_starts) - 1
        return types.Position(line=line, character=self._utf16[-1] - self._utf16[self._line_starts[line]])

    def line_end_column(self, line: int) -> int:
        """Comprimento da linha em unidades UTF-16 (-1 se a linha não existir)."""
        if line < 0 or line >= len(self._line_starts):
            return INVALID
        start = self._line_starts[line]
        return self._utf16[self._line_end(line)] - self._utf16[start]


def byte_offset_of(text: str, line: int, utf16_column: int) -> int:
    """
    Offset em bytes UTF-8 de (linha, coluna UTF-16).

    Returns:
        Offset em bytes, ou -1 se a posição não existir no texto
    """
    return PositionIndex(text).byte_offset(line, utf16_column)


def line_column_of(text: str, byte_offset: int) -> Optional[tuple[int, int]]:
    """
    (linha, coluna UTF-16) de um offset em bytes.

    Returns:
        Tupla (linha, coluna), ou None fora da faixa ou fora de fronteira
    """
    return PositionIndex(text).line_column(byte_offset)


def rune_offset_to_byte_offset(text: str, rune_offset: int) -> int:
    return PositionIndex(text).rune_to_byte(rune_offset)
