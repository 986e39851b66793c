"""ASGI entry point: ``uvicorn erp_gateway.main:app``."""

from erp_gateway.core.app_factory import create_app

app = create_app()
