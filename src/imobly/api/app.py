"""ASGI entry point: uvicorn imobly.api.app:app (role from APP_ROLE)."""

from imobly.api.factory import create_app

app = create_app()
