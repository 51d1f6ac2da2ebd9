"""
Dependencias de autenticación y autorización
"""
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from database import conexion
from models.usuario import Usuario
from utils.auth import verify_token
from utils.errors import Forbidden, Unauthorized
from utils.logging_utils import log_event


# Esquema OAuth2 para obtener el token del header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# ========== POLÍTICA DE AUTORIZACIÓN ==========

# Roles habilitados para mover dinero
MONEY_ROLES = frozenset({"ADMIN", "OWNER"})

# Operaciones que cambian saldos, ingresos o el historial de pagos
MONEY_OPERATIONS = frozenset({
    "manual_transaction",
    "transfer",
    "reverse_payment",
    "reverse_transaction",
    "create_account",
    "credit_staff",
    "rebuild_revenue",
})


def authorize(role: str, operation: str) -> bool:
    """
    Única política de autorización de operaciones financieras.

    Las operaciones de MONEY_OPERATIONS exigen ADMIN u OWNER; el resto
    solo requiere un usuario autenticado.
    """
    if operation in MONEY_OPERATIONS:
        return (role or "").upper() in MONEY_ROLES
    return True


# ========== DEPENDENCIAS DE AUTENTICACIÓN ==========

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(conexion.get_db)
) -> Usuario:
    """
    Obtiene el usuario actual desde el token JWT

    Raises:
        Unauthorized: token inválido o usuario inexistente
        Forbidden: usuario desactivado
    """
    payload = verify_token(token, token_type="access")
    username = payload.get("sub")
    user_id = payload.get("user_id")

    if username is None or user_id is None:
        raise Unauthorized("No se pudo validar las credenciales")

    user = db.query(Usuario).filter(
        Usuario.id == user_id,
        Usuario.username == username
    ).first()

    if user is None:
        raise Unauthorized("No se pudo validar las credenciales")

    if not user.activo:
        raise Forbidden("Usuario desactivado")

    return user


# ========== DEPENDENCIAS DE AUTORIZACIÓN ==========

def require_operation(operation: str):
    """
    Dependency que aplica authorize() antes de ejecutar la operación

    Returns:
        Función de dependencia que devuelve el usuario autorizado
    """
    async def check_operation(current_user: Usuario = Depends(get_current_user)) -> Usuario:
        if not authorize(current_user.rol, operation):
            log_event(
                "auth",
                current_user.username,
                "Intento de operación financiera sin permisos",
                f"rol={current_user.rol} operacion={operation}"
            )
            raise Forbidden(
                "Acceso denegado. Roles permitidos: ADMIN, OWNER",
                {"operation": operation}
            )
        return current_user

    return check_operation
