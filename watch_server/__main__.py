import logging

import uvicorn

from .app import app
from .config import settings

logging.basicConfig(level=logging.INFO)

if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
