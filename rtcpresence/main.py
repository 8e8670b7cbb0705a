from rtcpresence.core.logging import setup_logging

setup_logging()

# Importing the app after logging ensures early logs are captured
from rtcpresence.api.routes import app  # noqa: E402

__all__ = ['app']
