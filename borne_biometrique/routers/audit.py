"""
Routes du journal d'audit
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from borne_biometrique.database import get_db
from borne_biometrique.routers.auth import get_current_operator
from borne_biometrique.schemas.audit import AuditEventResponse, AuditStats, IntegrityReport
from borne_biometrique.schemas.session import OperatorToken
from borne_biometrique.services.audit_service import audit_chain
from borne_biometrique.services.biometric_service import biometric_service

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("/integrity", response_model=IntegrityReport)
async def verify_integrity(
    start_id: Optional[int] = None,
    end_id: Optional[int] = None,
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    """Revérifier la chaîne d'audit (entière ou sur un intervalle)"""
    return await biometric_service.verify_audit_integrity(db, start_id, end_id)


@router.get("/sessions/{session_id}", response_model=List[AuditEventResponse])
async def get_session_events(
    session_id: str,
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    return await audit_chain.find_by_session(db, session_id)


@router.get("/terminals/{terminal_id}", response_model=List[AuditEventResponse])
async def get_terminal_events(
    terminal_id: str,
    limit: int = Query(100, ge=1, le=1000),
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    return await audit_chain.find_by_terminal(db, terminal_id, limit)


@router.get("/stats", response_model=AuditStats)
async def get_audit_stats(
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    return await audit_chain.stats(db)
