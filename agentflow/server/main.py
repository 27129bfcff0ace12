"""
FastAPI server exposing the workflow compiler to the editor.

Start with:
    python -m agentflow.server.main

Or via uvicorn directly:
    uvicorn agentflow.server.main:app --port 8000 --reload
"""
from __future__ import annotations

import logging
from typing import Optional

# Load .env before reading any settings so AGENTFLOW_* overrides apply.
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentflow import __version__
from agentflow.server.config import ServerConfig
from agentflow.server.routes.compile_routes import router

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

def create_app(config: Optional[ServerConfig] = None) -> FastAPI:
    config = config or ServerConfig.from_env()

    app = FastAPI(title="agentflow compiler API", version=__version__)
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    logger.debug("Created app: %s", config)
    return app


app = create_app()

# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    settings = app.state.config
    uvicorn.run(
        "agentflow.server.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
