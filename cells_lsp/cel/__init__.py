"""
cel - Frontend da linguagem CEL (parser, checker, interpretador)
"""

from cells_lsp.cel.ast import CelIssue, CheckedAst, ParsedAst
from cells_lsp.cel.env import Environment
from cells_lsp.cel.interpreter import EvalError, format_value
from cells_lsp.cel.parser import ParserOptions
from cells_lsp.cel.unparser import UnparseError

__all__ = [
    "CelIssue",
    "CheckedAst",
    "Environment",
    "EvalError",
    "ParsedAst",
    "ParserOptions",
    "UnparseError",
    "format_value",
]
