# app.py
# To run the app, use:
#  python -m uvicorn app:app --reload --port 3001
# or simply: python app.py

import os
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Depends, status
from fastapi import Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.httpsredirect import HTTPSRedirectMiddleware
from sqlalchemy.exc import OperationalError

load_dotenv()

from database.connection import ensure_tables, check_database
from services.active_calls import ActiveCallDirectory
from services.vapi_client import VapiClient
from services.websocket_manager import BroadcastManager

# Import routers
from routers import calls, conversations, debug, webhooks, websockets

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the per-process call state; tear it down on shutdown."""
    if not ensure_tables():
        # Record routes answer 503 until the store comes back; tables are created on the next session
        logger.error("Database not available at startup")

    app.state.active_calls = ActiveCallDirectory()
    app.state.broadcaster = BroadcastManager()
    app.state.vapi_client = VapiClient()

    yield

    app.state.active_calls.clear()
    await app.state.broadcaster.close_all()


# Disable default docs to protect them
app = FastAPI(title="AI Interview Calls", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

# --- Basic Auth for Docs --- #
security_basic = HTTPBasic()

def get_admin_docs_auth(credentials: HTTPBasicCredentials = Depends(security_basic)):
    """
    Simple Basic Auth for accessing /docs.
    User/Pass come from DOCS_USERNAME / DOCS_PASSWORD (admin/admin if unset).
    """
    correct_username = secrets.compare_digest(credentials.username, os.getenv("DOCS_USERNAME", "admin"))
    correct_password = secrets.compare_digest(credentials.password, os.getenv("DOCS_PASSWORD", "admin"))

    if not (correct_username and correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username

@app.get("/docs", include_in_schema=False)
async def get_documentation(username: str = Depends(get_admin_docs_auth)):
    return get_swagger_ui_html(openapi_url="/openapi.json", title="AI Interview Calls Docs")

@app.get("/openapi.json", include_in_schema=False)
async def get_open_api_endpoint(username: str = Depends(get_admin_docs_auth)):
    return get_openapi(title="AI Interview Calls", version="1.0.0", routes=app.routes)

# --- Middleware --- #
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom Middleware for HSTS (Strict-Transport-Security)
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    # HSTS: 1 year, include subdomains
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response

# Enforce HTTPS Redirect in Production
if os.getenv("ENVIRONMENT", "development") == "production":
    app.add_middleware(HTTPSRedirectMiddleware)

# --- Errors --- #
@app.exception_handler(OperationalError)
async def database_unavailable(request: Request, exc: OperationalError):
    logger.error(f"Database not available for {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"success": False, "error": "Database not available"},
    )

# --- Base Routes --- #
@app.get("/")
def read_root():
    return {"message": "AI interview backend is running"}

@app.get("/api/health")
def health():
    return {
        "status": "ok",
        "database": "connected" if check_database() else "disconnected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

# --- Register Routers --- #
app.include_router(calls.router)
app.include_router(conversations.router)
app.include_router(webhooks.router)
app.include_router(websockets.router)
app.include_router(debug.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3001")))
