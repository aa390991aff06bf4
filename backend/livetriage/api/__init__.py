"""
LiveTriage - HTTP API

Routers mounted by the application factory in ``main.py``.
"""
