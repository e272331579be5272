# NG-HEADER: Nombre de archivo: __init__.py
# NG-HEADER: Ubicación: services/zonas/__init__.py
# NG-HEADER: Descripción: Resolución de cobertura, costo y tiempo de entrega por zona de reparto.
# NG-HEADER: Lineamientos: Ver AGENTS.md
