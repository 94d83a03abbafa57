"""
API package exposing FastAPI routes for trackdeal.

See ``main.py`` for application creation and ``routers`` for the
individual route modules.
"""
