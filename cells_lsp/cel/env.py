"""
env.py - Ambiente CEL: fachada de parse, checagem e avaliação

Propósito:
    Reunir parser, checker, interpretador e declarações em um único objeto
    compartilhado pelos handlers do servidor.

Componentes principais:
    - Environment.parse / check / compile / evaluate / unparse
    - Environment.functions / macros: metadados de documentação

Notas de implementação:
    - Cada chamada cria seu próprio Checker; o Environment pode ser usado
      por várias threads ao mesmo tempo
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from cells_lsp.cel.ast import CelIssue, CheckedAst, OffsetRange, ParsedAst
from cells_lsp.cel.checker import Checker
from cells_lsp.cel.declarations import STANDARD_FUNCTIONS, STANDARD_MACROS, FunctionDecl, MacroDecl
from cells_lsp.cel.interpreter import Interpreter
from cells_lsp.cel.parser import Parser, ParserOptions
from cells_lsp.cel.types import CelType
from cells_lsp.cel.unparser import unparse

logger = logging.getLogger(__name__)


class Environment:
    """
    Ambiente de compilação CEL.

    Args:
        variables: Variáveis declaradas (nome → tipo)
        options: Opções do parser (expansão e registro de macros)
    """

    def __init__(self, variables: Optional[dict[str, CelType]] = None, options: Optional[ParserOptions] = None):
        self._variables = dict(variables or {})
        self._parser = Parser(options)
        self._functions = dict(STANDARD_FUNCTIONS)
        self._macros = list(STANDARD_MACROS)
        self._interpreter = Interpreter()

    def parse(self, text: str) -> tuple[Optional[ParsedAst], list[CelIssue]]:
        return self._parser.parse(text)

    def comments(self, text: str) -> list[OffsetRange]:
        return self._parser.comments(text)

    def check(self, ast: ParsedAst) -> tuple[Optional[CheckedAst], list[CelIssue]]:
        return Checker(self._functions, self._variables).check(ast)

    def compile(self, text: str) -> tuple[Optional[CheckedAst], list[CelIssue]]:
        """Parse seguido de checagem."""
        ast, issues = self.parse(text)
        if ast is None:
            return None, issues
        return self.check(ast)

    def evaluate(self, ast: ParsedAst, activation: Optional[dict[str, Any]] = None) -> Any:
        """
        Avalia uma árvore.

        Raises:
            EvalError: erro de avaliação (divisão por zero, overflow, ...)
        """
        return self._interpreter.evaluate(ast, activation)

    def unparse(self, ast: ParsedAst) -> str:
        return unparse(ast)

    def functions(self) -> dict[str, FunctionDecl]:
        return self._functions

    def macros(self) -> list[MacroDecl]:
        return self._macros

    def macro(self, name: str) -> Optional[MacroDecl]:
        for m in self._macros:
            if m.name == name:
                return m
        return None
