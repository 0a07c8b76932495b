"""API Gateway principal - Punto de entrada de la aplicación"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import os
import logging
from contextlib import asynccontextmanager

from shared.database.connection import init_db, close_db
from shared.cache.redis_client import init_redis, close_redis
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from shared.utils.exception_handlers import register_exception_handlers

# Configurar logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    logger.info("Iniciando aplicación...")
    await init_db()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    logger.info("Cerrando aplicación...")
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


app = FastAPI(
    title="QRGate API",
    description="Emisión de tickets con credenciales QR y verificación en puerta",
    version="1.0.0",
    lifespan=lifespan
)

# CORS primero (antes de rate limiting)
default_origins = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
cors_origins_str = os.getenv("CORS_ORIGINS", default_origins)

if os.getenv("APP_ENV", "development") == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
register_exception_handlers(app)

# Incluir routers de cada servicio
from services.ticket_purchase.routes.purchase import router as purchase_router
from services.ticket_validation.routes.validation import router as validation_router
from services.event_management.routes.events import router as events_router

app.include_router(purchase_router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(validation_router, prefix="/api/v1/verifications", tags=["verifications"])
app.include_router(events_router, prefix="/api/v1/events", tags=["events"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "qrgate-api"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica conexiones"""
    try:
        from sqlalchemy import text
        from shared.database import connection
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))

        from shared.cache.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()

        return {"status": "ready", "database": "connected", "redis": "connected"}
    except Exception as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=os.getenv("APP_DEBUG", "False").lower() == "true"
    )
