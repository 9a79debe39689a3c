"""FastAPI application entry point.

This module wires together the API routers, the error handlers and the
startup tasks, and exposes the ASGI application object used by the
server.
"""

import os
import logging
import asyncio
from datetime import date

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from kidledger.routes import (
    children,
    transactions,
    allowance,
    interest,
    loans,
    cron,
    settings,
)
from kidledger.database import create_db_and_tables, async_session
from kidledger.crud import get_settings
from kidledger.exceptions import (
    LedgerError,
    ledger_error_handler,
    storage_error_handler,
)
from kidledger.allowance import process_due_allowances
from kidledger.interest import accrue_all

# Basic logging configuration.  The log level can be controlled with an
# environment variable so deployments can adjust verbosity without code
# changes.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

# Off by default; production deployments usually call the /cron endpoints.
RUN_DAILY_TASK = os.getenv("RUN_DAILY_TASK", "false").lower() == "true"

app = FastAPI(title="Kid Ledger")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(LedgerError, ledger_error_handler)
app.add_exception_handler(SQLAlchemyError, storage_error_handler)


@app.on_event("startup")
async def on_startup():
    """Initialize the database and optionally start the daily task."""

    await create_db_and_tables()
    if RUN_DAILY_TASK:
        asyncio.create_task(daily_task())


async def daily_task():
    """Background coroutine that pays allowances and accrues interest once a day."""

    logger.info("Starting daily ledger task")
    while True:
        try:
            async with async_session() as session:
                today = date.today()
                await process_due_allowances(session, today)
                # Skips children already credited this month.
                await accrue_all(session, today)
        except Exception as exc:
            logger.exception("Daily ledger task failed: %s", exc)
        await asyncio.sleep(60 * 60 * 24)


app.include_router(children.router)
app.include_router(transactions.router)
app.include_router(allowance.router)
app.include_router(interest.router)
app.include_router(loans.router)
app.include_router(cron.router)
app.include_router(settings.router)


@app.get("/")
async def read_root():
    async with async_session() as session:
        s = await get_settings(session)
        name = s.site_name
    return {"message": f"Welcome to {name} API"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "code": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
