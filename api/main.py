"""
Relationship Map - FastAPI Application Entry Point

Run locally with:

    uvicorn api.main:app --port 8000
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import relationships
from config.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - close the shared oracle on shutdown."""
    logger.info(f"Relationship map service starting (oracle: {settings.oracle_provider})")
    yield
    oracle = relationships._oracle
    if oracle is not None:
        await oracle.aclose()
        relationships._oracle = None
    logger.info("Relationship map service stopped")


app = FastAPI(
    title="Relationship Map",
    description="Relationship trajectory, health and commitment tracking over message history",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(relationships.router)


def _describe_errors(errors: list[dict]) -> list[dict]:
    """Flatten pydantic errors to field/message pairs."""
    return [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in errors
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed map requests as 400s."""
    details = _describe_errors(exc.errors())
    if any(d["field"] == "user_email" for d in details):
        message = "user_email cannot be empty"
    else:
        message = "Invalid relationship map request"
    logger.warning(f"Rejected {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message, "detail": details})


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies critical dependencies."""
    checks = {
        "oracle_configured": (
            settings.oracle_provider.lower() == "ollama"
            or bool(settings.anthropic_api_key and settings.anthropic_api_key.strip())
        ),
    }

    all_healthy = all(checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "service": "relationship-map",
        "checks": checks,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
