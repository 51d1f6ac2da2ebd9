from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

import config

# URL de conexión clásica (síncrona), usa psycopg2 por defecto
DATABASE_URL = config.DATABASE_URL or (
    f"postgresql://{config.DB_USER}:{config.DB_PASSWORD}@{config.DB_HOST}:{config.DB_PORT}/{config.DB_NAME}"
)

if DATABASE_URL.startswith("sqlite"):
    # SQLite en memoria (tests): una sola conexión compartida entre hilos
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(DATABASE_URL, pool_pre_ping=True)

# Crear la sesión sincronica
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Declarative base
Base = declarative_base()


# Función para obtener la sesión
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, commit: bool = True):
    """
    Unidad de trabajo de los servicios.

    Con commit=True confirma al salir y hace rollback ante cualquier error.
    Con commit=False solo hace flush: el llamador externo es dueño de la
    transacción y decide commit/rollback.
    """
    try:
        yield db
        if commit:
            db.commit()
        else:
            db.flush()
    except Exception:
        if commit:
            db.rollback()
        raise
