"""
Utilidades para tokens JWT

El login y la emisión de contraseñas pertenecen al proveedor de
autenticación; acá solo se emiten y verifican tokens de acceso.
"""
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt

import config
from utils.errors import Unauthorized


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Crea un token de acceso JWT
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow(),
        "type": "access"
    })

    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def verify_token(token: str, token_type: str = "access") -> dict:
    """
    Verifica y decodifica un token JWT

    Raises:
        Unauthorized: token inválido, expirado o de otro tipo
    """
    try:
        # jose valida la expiración (exp) por su cuenta
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise Unauthorized("No se pudo validar las credenciales")

    if payload.get("type") != token_type:
        raise Unauthorized(f"Tipo de token inválido. Se esperaba '{token_type}'")

    return payload
