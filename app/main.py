import os
from contextlib import asynccontextmanager
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from grocery_tracker.config import configure_logging, load_settings
from grocery_tracker.db.database import init_db
from grocery_tracker.runtime import build_services
from app.dependencies import verify_session_token, is_public, SESSION_COOKIE
from app.routers import auth, notifications, reports, expiry, jobs, demo


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    configure_logging(settings.log_level)
    # Initialize main DB
    init_db()
    # Initialize and seed demo DB if DEMO_DB_URL is set
    demo_url = os.environ.get("DEMO_DB_URL")
    if demo_url:
        from grocery_tracker.db.database import override_db_path
        from demo.seed import seed_if_empty
        with override_db_path(Path(demo_url)):
            init_db()
            seed_if_empty()

    services = build_services(settings)
    app.state.services = services
    if settings.scheduler_enabled:
        services.scheduler.start(catch_up=settings.catch_up_missed_runs)
    try:
        yield
    finally:
        services.scheduler.stop()


app = FastAPI(title="Grocery Tracker", lifespan=lifespan)


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    if not is_public(request.url.path):
        token = request.cookies.get(SESSION_COOKIE)
        if not token or not verify_session_token(token):
            return JSONResponse({"detail": "Not authenticated"}, status_code=401)
    return await call_next(request)


app.include_router(auth.router)
app.include_router(notifications.router)
app.include_router(reports.router)
app.include_router(expiry.router)
app.include_router(jobs.router)
app.include_router(demo.router)
