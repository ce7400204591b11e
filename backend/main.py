import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from db import engine, Base, SessionLocal
from models import models  # noqa: F401 — registers all ORM models
from models.models import User, UserRole
from config import ConfigurationError, APP_URL
from routers import attest, auth, cron, dashboard, download, notas, settings
from routers.auth import get_password_hash
from services.settings_service import get_settings

logging.basicConfig(level=logging.INFO,
                    format="%(asctime)s  %(levelname)s  %(name)s — %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        get_settings(db)
        if db.query(User).count() == 0:
            db.add(User(
                name="Administrador",
                email="admin@fadex.org.br",
                hashed_password=get_password_hash("admin123"),
                role=UserRole.owner,
            ))
            db.commit()
            logger.info("Dono criado: admin@fadex.org.br / admin123")
    finally:
        db.close()
    yield


app = FastAPI(
    title="Notas Fadex",
    description="Envio, atesto e rejeição de notas fiscais",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[APP_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.critical(f"Configuration error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Erro de configuração do servidor."})


# Staff API lives under /api; the attestation link is public at /attest/{token}
app.include_router(auth.router, prefix="/api")
app.include_router(notas.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(settings.router, prefix="/api")
app.include_router(download.router, prefix="/api")
app.include_router(cron.router, prefix="/api")
app.include_router(attest.router)


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
