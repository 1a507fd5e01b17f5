"""FastAPI server for streaming diagram generation."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartdraw import config
from smartdraw.api.routes import router

# Configure logging on import, before anything else logs
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Smartdraw", description="Streaming Excalidraw diagram generation")

# CORS for the canvas dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


def main() -> None:
    import uvicorn

    logger.info("Starting server on %s:%d", config.HOST, config.PORT)
    uvicorn.run("smartdraw.api.server:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
