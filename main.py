from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

import config
from database.conexion import Base, engine
import models  # 👈 asegura que todos los modelos estén registrados
from endpoints import accounts, billing, payments, revenue
from utils.errors import HotelError
from utils.logging_utils import log_event
from utils.rate_limiter import setup_rate_limiting


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        Base.metadata.create_all(bind=engine)
        log_event("sistema", "system", "Tablas creadas (o ya existian)")
    except Exception as e:
        log_event("sistema", "system", "Error creando tablas", f"error={str(e)}", level="error")
    yield


app = FastAPI(title="Hotel Billing & Ledger", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)


# ============================================================================
# TRADUCCIÓN DE ERRORES
# ============================================================================

@app.exception_handler(HotelError)
async def hotel_error_handler(request: Request, exc: HotelError):
    if exc.status_code >= 500:
        log_event("sistema", "-", "Error interno", f"path={request.url.path}, error={exc.message}", level="error")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "validation_error",
            "message": "Datos de entrada inválidos",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    # Carrera entre escrituras concurrentes: el cliente puede reintentar
    log_event("sistema", "-", "Conflicto de integridad", f"path={request.url.path}, error={exc.orig}", level="warning")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "error": "invalid_state",
            "message": "Conflicto con una operación concurrente, reintentar",
            "detail": {},
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log_event("sistema", "-", "Error no controlado", f"path={request.url.path}, error={str(exc)}", level="error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "message": "Error interno del servidor", "detail": {}},
    )


app.include_router(accounts.router)
app.include_router(billing.router)
app.include_router(payments.router)
app.include_router(revenue.router)


@app.get("/")
def read_root():
    return {"message": "Hotel Billing & Ledger API"}
