"""
Routing subpackage.

Exposes the route modules so they can be imported succinctly in
``api/main.py``.
"""
from . import negotiations  # noqa: F401
