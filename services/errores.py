# NG-HEADER: Nombre de archivo: errores.py
# NG-HEADER: Ubicación: services/errores.py
# NG-HEADER: Descripción: Excepciones de dominio que la API traduce a respuestas HTTP.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Errores de reglas de negocio."""
from __future__ import annotations

from typing import Optional


class ReglaNegocioError(Exception):
    """Una regla de negocio rechazó la operación (se responde 422)."""

    def __init__(self, mensaje: str, campo: Optional[str] = None, codigo: Optional[str] = None):
        super().__init__(mensaje)
        self.mensaje = mensaje
        self.campo = campo
        self.codigo = codigo

    def as_dict(self) -> dict:
        data: dict = {"detail": self.mensaje}
        if self.campo:
            data["field"] = self.campo
        if self.codigo:
            data["code"] = self.codigo
        return data


class NoEncontradoError(Exception):
    """Registro inexistente (se responde 404)."""

    def __init__(self, entidad: str, entidad_id=None):
        self.entidad = entidad
        self.entidad_id = entidad_id
        super().__init__(f"{entidad} no encontrado")
