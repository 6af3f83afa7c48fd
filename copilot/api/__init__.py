"""
HTTP API package. Routers live in `copilot.api.endpoints`.
"""
