"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from copilot.api.endpoints import router as api_router
from copilot.core.config import settings
from copilot.core.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for FastAPI app.
    """
    logger.info(f"Starting Advisor Copilot application ({settings.APP_ENV}, {settings.STORAGE_BACKEND} storage)")
    yield
    logger.info("Shutting down Advisor Copilot application")


# Create FastAPI app
app = FastAPI(
    title="Advisor Copilot",
    description="Agent orchestration and task workflow engine for an email, calendar and CRM assistant",
    version="0.1.0",
    lifespan=lifespan,
)


# Custom OpenAPI to use HTTP Bearer security scheme
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT"
        }
    }

    # Webhooks and health checks are unauthenticated
    for path in openapi_schema["paths"]:
        if "/webhooks/" not in path and path not in ("/health", "/"):
            for method in openapi_schema["paths"][path]:
                openapi_schema["paths"][path][method]["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

# Determine CORS origins
cors_origins = [settings.FRONTEND_URL]
if settings.APP_ENV == "development":
    cors_origins.extend([
        "http://localhost:3000",
        "http://localhost:5173",  # Vite default
        "http://127.0.0.1:5173",
        "http://localhost:8000",
        "http://127.0.0.1:8000"
    ])
elif settings.CORS_ORIGINS and settings.CORS_ORIGINS != ["*"]:
    cors_origins.extend(settings.CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-Client-Info"],
    expose_headers=["Content-Length"],
    max_age=600,  # 10 minutes
)

# Include API router
app.include_router(api_router, prefix=settings.API_PREFIX)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error. Please try again later."},
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Welcome to Advisor Copilot API", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
