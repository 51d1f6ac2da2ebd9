"""
Modelo de Usuario (resuelto por el proveedor de autenticación)
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from database.conexion import Base


class Usuario(Base):
    """Tabla de usuarios del sistema"""
    __tablename__ = "usuarios"
    __table_args__ = (
        Index('idx_usuario_activo', 'activo'),
        Index('idx_usuario_rol', 'rol'),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=True, index=True)
    nombre = Column(String(60), nullable=True)
    apellido = Column(String(60), nullable=True)

    # ADMIN | OWNER | MANAGER | STAFF
    rol = Column(String(20), nullable=False, default="STAFF")

    activo = Column(Boolean, default=True, nullable=False)

    fecha_creacion = Column(DateTime, default=datetime.utcnow, nullable=False)
    fecha_ultima_modificacion = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Cuenta personal en el libro de cuentas (una por usuario)
    bank_account = relationship("BankAccount", back_populates="user", uselist=False)

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.nombre, self.apellido) if p)
        return full or self.username

    def __repr__(self):
        return f"<Usuario(id={self.id}, username='{self.username}', rol='{self.rol}')>"
