"""API server entry point for python -m vidgate.api"""
import uvicorn
from vidgate.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "vidgate.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
