"""
===========================================================================
main.py — Application Entry Point
===========================================================================

PURPOSE:
    Creates the FastAPI app, wires the routers together and owns the
    lifetime of the shared clients:

    STARTUP  → create the Redis client, the HTTP client and the services
               built on them (dependencies.build_services)
    SHUTDOWN → close both clients

    Run it with:
        uvicorn main:app --reload
===========================================================================
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config_loader import config
from dependencies import build_services, close_services
from routes import chat_routes, page_routes

logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s - %(message)s")
logger = logging.getLogger("site_chat")


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services(config)
    app.state.rag_chat = services["rag_chat"]
    app.state.orchestrator = services["orchestrator"]
    logger.info(
        "Started: redis=%s set=%s session_policy=%s",
        config["redis_url"], config["indexed_urls_key"], config["session_policy"],
    )
    try:
        yield
    finally:
        await close_services(services)


app = FastAPI(title="Site Chat", version="0.1.0", lifespan=lifespan)


@app.get("/healthz")
async def healthz():
    return {"ok": True}


# The page router holds a catch-all route, so it goes last
app.include_router(chat_routes.router)
app.include_router(page_routes.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
