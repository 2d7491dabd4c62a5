from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pagefeed.core.config import settings
from pagefeed.core.db import get_engine, init_db
from pagefeed.core.log import configure_logging
from pagefeed.core.scheduler import start_scheduler, shutdown_scheduler
from pagefeed.api.feeds import router as feeds_router

app = FastAPI(title="pagefeed", version="1.0.0")

# Feed readers fetch from anywhere; nothing here is writable.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(feeds_router)

@app.on_event("startup")
async def on_startup():
    configure_logging(settings.log_level)
    # Unreachable store is fatal here and nowhere else
    await init_db(get_engine())
    start_scheduler()

@app.on_event("shutdown")
async def on_shutdown():
    shutdown_scheduler()

@app.get("/health")
async def health():
    return {"ok": True}
