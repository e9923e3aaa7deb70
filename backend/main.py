import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config import settings
from db.database import engine, Base
from api.settings import router as settings_router
from api.habits import router as habits_router
from api.rules import router as rules_router, routines_router
from api.today import router as today_router
from api.reminders import router as reminders_router, return_hooks_router, salvage_router
from api.templates import router as templates_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

settings.validate_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.SECURITY_HEADERS_ENABLED:
        return response
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=(self)"
    response.headers["Content-Security-Policy"] = settings.SECURITY_CSP
    return response


# Routers
app.include_router(settings_router, prefix="/api")
app.include_router(habits_router, prefix="/api")
app.include_router(routines_router, prefix="/api")
app.include_router(rules_router, prefix="/api")
app.include_router(today_router, prefix="/api")
app.include_router(reminders_router, prefix="/api")
app.include_router(return_hooks_router, prefix="/api")
app.include_router(salvage_router, prefix="/api")
app.include_router(templates_router, prefix="/api")

# Serve frontend static files (in production)
static_dir = Path(__file__).parent / "static"
if static_dir.exists():
    app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}
