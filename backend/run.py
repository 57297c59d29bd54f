"""Run FastAPI backend server."""

import os

import uvicorn

from mediagen.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=os.environ.get("MEDIAGEN_ENV", "development") == "development",
    )
