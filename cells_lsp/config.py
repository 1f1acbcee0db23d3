"""
config.py - Configuração do servidor

Propósito:
    Ler as opções do cliente (initializationOptions e
    workspace/didChangeConfiguration) em um ServerSettings.

Chaves reconhecidas (seção "cells" ou a própria seção):
    diagnostics.enabled   → publica diagnósticos (padrão: true)
    inlayHints.enabled    → responde inlay hints (padrão: true)

Notas de implementação:
    - Aceita tanto {"cells": {...}} quanto a seção sem envelope
    - Aceita chaves aninhadas ({"diagnostics": {"enabled": false}}) e
      pontilhadas ({"diagnostics.enabled": false})
    - Valores ausentes ou de tipo inesperado ficam no padrão
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

SECTION = "cells"


@dataclass(frozen=True)
class ServerSettings:
    diagnostics_enabled: bool = True
    inlay_hints_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Any) -> ServerSettings:
        """
        Constrói as configurações a partir do payload do cliente.

        Args:
            settings: params.settings ou initializationOptions (qualquer JSON)

        Returns:
            ServerSettings com os padrões para o que não foi informado
        """
        section = settings
        if isinstance(settings, dict) and isinstance(settings.get(SECTION), dict):
            section = settings[SECTION]
        if not isinstance(section, dict):
            return cls()
        return cls(
            diagnostics_enabled=_flag(section, "diagnostics", "enabled"),
            inlay_hints_enabled=_flag(section, "inlayHints", "enabled"),
        )


def _flag(section: dict, group: str, key: str, default: bool = True) -> bool:
    value = section.get(f"{group}.{key}")
    if value is None:
        nested = section.get(group)
        if isinstance(nested, dict):
            value = nested.get(key)
    if isinstance(value, bool):
        return value
    if value is not None:
        logger.warning(f"Configuração {group}.{key} ignorada: esperado booleano, recebido {value!r}")
    return default
