"""
=============================================================================
RASPADINHA - Ponto de Entrada Principal (FastAPI)
=============================================================================
Backend de liquidação das raspadinhas.

Integra:
- Jogada (preço, sorteio, grade, ledger)
- Webhooks PIX da Woovi (pagamento concluído e expirado)
- Depósitos PIX e endpoints de administração
=============================================================================
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from .admin import router as admin_router
from .config import settings
from ..database import create_session_factory, create_tables
from .deposits import router as deposits_router
from .errors import SettlementError
from .game import router as game_router
from .pix_gateway import WooviClient
from .storage import SqlAlchemySettlementStore
from .webhooks import router as webhook_router

logger = logging.getLogger("raspadinha")


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Monta store e gateway, a menos que já tenham sido injetados."""
    configure_logging()
    logger.info("[RASPADINHA] Iniciando servidor (%s)...", settings.ENVIRONMENT)

    engine = None
    if getattr(app.state, "store", None) is None:
        engine, session_factory = create_session_factory(settings.DATABASE_URL, echo=settings.DEBUG)
        if settings.DEBUG:
            await create_tables(engine)
        app.state.store = SqlAlchemySettlementStore(session_factory)
        logger.info("[RASPADINHA] Banco conectado")

    if getattr(app.state, "gateway", None) is None:
        app.state.gateway = WooviClient()

    yield

    logger.info("[RASPADINHA] Encerrando servidor...")
    await app.state.gateway.close()
    if engine is not None:
        await engine.dispose()


# =============================================================================
# APLICAÇÃO FASTAPI
# =============================================================================

app = FastAPI(
    title="Raspadinha API",
    description="""
    ## Liquidação de raspadinhas e conciliação PIX

    ### Jogada:
    Recebida → Validada → Resolvida → Liquidada → Respondida

    ### Depósito (FSM):
    pending → completed | expired | failed
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# =============================================================================
# MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Adiciona headers de segurança às respostas."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# =============================================================================
# ERROS
# =============================================================================

@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    if exc.status_code >= 500:
        logger.error("[RASPADINHA] %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request"}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("[RASPADINHA] Erro inesperado em %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# =============================================================================
# ENDPOINTS - HEALTH & STATUS
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check para Docker e load balancers."""
    return {
        "status": "healthy",
        "service": "raspadinha-backend",
        "version": __version__,
        "timestamp": time.time(),
    }


@app.get("/")
async def root():
    return {
        "message": "Raspadinha API",
        "docs": "/docs",
        "health": "/health",
        "version": __version__,
    }


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(game_router, prefix="/api/v1")
app.include_router(webhook_router, prefix="/api/v1")
app.include_router(deposits_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
