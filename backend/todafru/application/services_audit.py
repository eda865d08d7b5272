"""
Auditoría Global de Acciones
============================
Registro inmutable de las acciones sobre stock y pedidos.
- Try-safe: no bloquea la operación si falla la auditoría
- Solo INSERT, prohibido UPDATE/DELETE
- Usa sesión separada: se llama después del commit de la operación principal
"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session, sessionmaker

from ..domain.models_audit import AuditLog

logger = logging.getLogger(__name__)

# Módulos estándar
MODULE_INVENTARIO = "INVENTARIO"
MODULE_PEDIDOS = "PEDIDOS"

# Acciones estándar
ACTION_CREATE = "CREATE"
ACTION_APPLY = "APPLY"
ACTION_REVERSE = "REVERSE"
ACTION_DELETE = "DELETE"


def log_audit(
    db: Session,
    module: str,
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    summary: Optional[str] = None,
    metadata_: Optional[Dict[str, Any]] = None,
    user_id: Optional[int] = None,
    user_role: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """
    Registra un evento de auditoría. Inmutable.
    Try-safe: sesión separada sobre el mismo engine que `db`.
    """
    audit_db = None
    try:
        audit_db = sessionmaker(bind=db.get_bind())()
        log = AuditLog(
            module=module,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            summary=summary[:500] if summary else summary,
            metadata_=metadata_,
            user_id=user_id,
            user_role=user_role,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        audit_db.add(log)
        audit_db.commit()
    except Exception:
        if audit_db:
            audit_db.rollback()
        # No fallar la operación principal
        logger.exception("No se pudo registrar auditoría %s/%s de %s %s", module, action, entity_type, entity_id)
    finally:
        if audit_db:
            audit_db.close()
