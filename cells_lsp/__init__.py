"""
cells_lsp - Language Server Protocol para expressões CEL

Propósito:
    Servidor LSP que fornece diagnósticos, navegação por escopo e
    colorização para documentos CEL em editores compatíveis com LSP.

Componentes principais:
    - jsonrpc: Transporte JSON-RPC com framing Content-Length
    - positions / documents / syntax: posições, documentos e escopos
    - server: Servidor principal e registro de handlers
    - cel: Parser, checker, avaliador e unparser CEL

Exemplo de uso:
    python -m cells_lsp
"""
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
import re


def _read_version_from_pyproject() -> str:
    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    try:
        text = pyproject.read_text(encoding="utf-8")
    except OSError:
        return "0.0.0"
    match = re.search(r'(?m)^version = "([^"]+)"\s*$', text)
    return match.group(1) if match else "0.0.0"


try:
    __version__ = _pkg_version("cells-lsp")
except PackageNotFoundError:
    __version__ = _read_version_from_pyproject()

__all__ = ["server", "jsonrpc", "cel"]
