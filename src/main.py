"""Main FastAPI application entry point for the video analysis service.

Starts the FastAPI server; all application logic lives in src.api.main.
"""

from src.api.main import app

if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8030")),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
