"""
API module for the live chat hub.

Routers live in ``api.routes``; the push channel in ``api.websocket``.
"""
