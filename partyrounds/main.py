"""
Application FastAPI : point d'entrée
====================================

Rôle
----
- Instancie l'app FastAPI, configure le CORS pour le front,
- Monte tous les routeurs (REST + WebSocket),
- Uniformise les erreurs : {"success": false, "error": ..., "errorId": ...}.

Notes
-----
- Les importations des routeurs sont explicites pour éviter les surprises d'auto-discovery.
- Garder la liste `ALLOWED_ORIGINS` en phase avec les URLs du front.
- ⚠️ Le middleware CORS doit être ajouté AVANT les include_router.
- Au démarrage, les parties en mode auto reprennent leur boucle.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from partyrounds.routes.auth import router as auth_router
from partyrounds.routes.auto import router as auto_router
from partyrounds.routes.bots import router as bots_router
from partyrounds.routes.foret import router as foret_router
from partyrounds.routes.games import router as games_router
from partyrounds.routes.health import router as health_router
from partyrounds.routes.infection import router as infection_router
from partyrounds.routes.logs import router as logs_router
from partyrounds.routes.phase import router as phase_router
from partyrounds.routes.rivieres import router as rivieres_router
from partyrounds.routes.sheriff import router as sheriff_router
from partyrounds.routes.submissions import router as submissions_router
from partyrounds.routes.websocket import router as ws_router

from partyrounds.config.settings import settings
from partyrounds.engine.errors import ResolutionError, new_error_id
from partyrounds.services import auto_controller
from partyrounds.services.store_registry import find_store, list_game_ids

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("partyrounds")

# --- App FastAPI principale ---
app = FastAPI(title=settings.APP_NAME)

# ===========================
# CORS (dev: permissif)
# ===========================
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],   # dont Authorization
)

# ===========================
# Montage des routers
# ===========================
# ⚠️ Les protections hôte/admin sont posées PAR ROUTE (Depends), pas sur le
#    router entier, pour ne pas bloquer les préflights OPTIONS.
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(games_router)
app.include_router(submissions_router)
app.include_router(foret_router)
app.include_router(sheriff_router)
app.include_router(rivieres_router)
app.include_router(infection_router)
app.include_router(phase_router)
app.include_router(bots_router)
app.include_router(auto_router)
app.include_router(logs_router)
app.include_router(ws_router)                  # WebSocket endpoint (/ws/{game_id})


# ===========================
# Erreurs
# ===========================
def _error(status_code: int, message: str, error_id: str, details=None) -> JSONResponse:
    body = {"success": False, "error": message, "errorId": error_id}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ResolutionError)
async def resolution_error_handler(request: Request, exc: ResolutionError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s %s -> %s [%s] %s", request.method, request.url.path,
               exc.status_code, exc.error_id, exc.message)
    return _error(exc.status_code, exc.message, exc.error_id, exc.details)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    error_id = new_error_id()
    logger.info("%s %s -> %s [%s] %s", request.method, request.url.path, exc.status_code, error_id, exc.detail)
    return _error(exc.status_code, str(exc.detail), error_id)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error_id = new_error_id()
    logger.info("%s %s -> 422 [%s] invalid payload", request.method, request.url.path, error_id)
    return _error(422, "Requête invalide", error_id, {"errors": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    error_id = new_error_id()
    logger.exception("%s %s -> 500 [%s]", request.method, request.url.path, error_id)
    return _error(500, "Erreur interne", error_id)


# --- Racine utile pour "ping" simple (sans /health) ---
@app.get("/")
async def root():
    """Ping basique : permet de vérifier que l'app tourne."""
    return {"ok": True, "service": "partyrounds-backend"}


# --- Hook de démarrage ---
@app.on_event("startup")
async def resume_auto_mode():
    """Relance la boucle auto des parties Forêt restées en mode auto."""
    for game_id in list_game_ids():
        store = find_store(game_id)
        if store and store.game.get("auto_mode") and store.game.get("status") == "IN_GAME":
            auto_controller.start(game_id)
            logger.info("auto mode resumed for %s", game_id)
