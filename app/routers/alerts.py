"""Operational alerts, readable by admin keys only."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.alert import Alert
from app.models.api_key import ApiScope
from app.schemas.alert import AlertRead
from app.security import require_api_key, require_scope
from app.services import alerts as alert_service

router = APIRouter(prefix="/alerts", tags=["alerts"], dependencies=[Depends(require_api_key)])


@router.get(
    "",
    response_model=list[AlertRead],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_scope({ApiScope.admin}))],
)
def list_alerts(
    alert_type: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[Alert]:
    return alert_service.list_alerts(db, alert_type=alert_type, limit=limit)
