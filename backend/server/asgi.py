"""
ASGI entry point for the radio control server.

    uvicorn server.asgi:app --app-dir backend

`.env` is loaded before the app reads AppConfig from the environment.
"""

from dotenv import load_dotenv

load_dotenv()

from config import AppConfig  # pylint: disable=wrong-import-position
from server.app import create_app  # pylint: disable=wrong-import-position

config = AppConfig.load_from_env()
app = create_app(config)
