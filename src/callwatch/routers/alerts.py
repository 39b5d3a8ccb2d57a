from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from callwatch.dependencies import get_alert_store
from callwatch.schemas.analytics import AlertRecordRequest, AnalyticsData, StoredAlert
from callwatch.schemas.evaluation import SeverityLabel
from callwatch.services.persistence import AlertStore

router = APIRouter(prefix="/api/v1", tags=["alerts"])


@router.post("/alerts", status_code=201)
async def store_alert(
    body: AlertRecordRequest,
    store: AlertStore = Depends(get_alert_store),
) -> dict:
    store.insert_alert(body.alert, body.metadata)
    return {"id": body.alert.id}


@router.get("/alerts", response_model=list[StoredAlert])
async def list_alerts(
    start_date: str | None = None,
    end_date: str | None = None,
    agent_id: str | None = None,
    severity: SeverityLabel | None = None,
    rule_id: str | None = None,
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int | None = Query(default=None, ge=0),
    store: AlertStore = Depends(get_alert_store),
) -> list[StoredAlert]:
    return store.get_alerts(
        start_date=start_date,
        end_date=end_date,
        agent_id=agent_id,
        severity=severity,
        rule_id=rule_id,
        limit=limit,
        offset=offset,
    )


@router.get("/alerts/export")
async def export_alerts(
    start_date: str | None = None,
    end_date: str | None = None,
    store: AlertStore = Depends(get_alert_store),
) -> Response:
    body = store.export_json(start_date=start_date, end_date=end_date)
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="alerts.json"'},
    )


@router.get("/analytics", response_model=AnalyticsData)
async def get_analytics(
    start_date: str,
    end_date: str,
    store: AlertStore = Depends(get_alert_store),
) -> AnalyticsData:
    return store.get_analytics(start_date, end_date)
