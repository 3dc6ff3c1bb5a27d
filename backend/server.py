#!/usr/bin/env python3
"""
Student Hub deployment backend.
- /api/projects      -> upload projects, deploy them, follow deployment progress
- /api/integrations  -> connect GitHub / Vercel tokens
Run: uvicorn server:app --host 0.0.0.0 --port 8000
"""
import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from config import settings
from database import init_db
from errors import DeploymentError
from routers.integrations import router as integrations_router
from routers.projects import router as projects_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

HOST = "0.0.0.0"
PORT = int(os.environ.get("PORT", 8000))

app = FastAPI(title=settings.app_name, debug=settings.debug, version="1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DeploymentError)
async def deployment_error_handler(request: Request, exc: DeploymentError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "error": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{where}: {first.get('msg')}" if where else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"success": False, "message": message, "error": "validation_error"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content={"success": False, "message": message, "error": "internal_error"})


@app.on_event("startup")
async def startup_event():
    init_db()
    logger.info("Application startup (%s)", settings.environment)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": settings.app_name}


app.include_router(projects_router)
app.include_router(integrations_router)


def main() -> None:
    logger.info("Student Hub API: http://%s:%s", HOST, PORT)
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
