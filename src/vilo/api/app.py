"""ASGI entrypoint: uvicorn vilo.api.app:app"""

from vilo.api.factory import create_app

app = create_app()
