"""CORS middleware configuration."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from distributo.config import settings


def setup_cors(app: FastAPI) -> None:
    """Register CORS middleware with allowed origins from settings."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "HEAD"],
        allow_headers=["Authorization", "Content-Type"],
    )
