"""API server entry point for python -m santavid.api"""
import uvicorn

from santavid import configure_logging
from santavid.config import settings

if __name__ == "__main__":
    configure_logging()
    uvicorn.run(
        "santavid.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
