"""
CORS for the Wayra web client.

Allowed origins come from settings.cors_origins: the Next.js app in
production and localhost:3000 / localhost:3001 in development. No wildcards.
The WebSocket upgrade is not subject to CORS; only the HTTP query routes are.
X-Request-ID is exposed so the client can quote it in bug reports.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.collab.config import settings

ALLOWED_METHODS = ["GET", "POST", "OPTIONS"]
ALLOWED_HEADERS = ["Authorization", "Content-Type", "X-Request-ID"]


def setup_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
