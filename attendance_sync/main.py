"""
Point d'entrée du store distant de référence (API FastAPI).
Démarrage : uvicorn attendance_sync.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from attendance_sync.database import init_server_db
from attendance_sync.routers import remote_tables

logger = logging.getLogger(__name__)

SERVICE_NAME = "Attendance Sync API"
VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application : crée les tables du store distant au démarrage."""
    init_server_db()
    yield


app = FastAPI(
    title=SERVICE_NAME,
    description="Store distant de référence pour la synchronisation offline-first des présences",
    version=VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise tous les ports localhost en développement
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "HEAD", "POST", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Cache-Control"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Toute exception non gérée devient une 500 JSON (avec les headers CORS)."""
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.api_route("/api/heartbeat", methods=["GET", "HEAD"], tags=["Santé"])
def heartbeat():
    """Sonde de connectivité : réponse minimale, jamais mise en cache."""
    return Response(status_code=200, headers={"Cache-Control": "no-store"})


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": SERVICE_NAME, "version": VERSION}


# Après les routes fixes : /api/{table} capturerait /api/health
app.include_router(remote_tables.router)
