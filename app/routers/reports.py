from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from grocery_tracker.core.analytics import REPORT_KINDS, export_csv
from grocery_tracker.runtime import Services
from app.dependencies import current_user_id, get_services
from app.schemas import ReportQuery

router = APIRouter(prefix="/reports", tags=["reports"])


def _build(services: Services, user_id: int, kind: str, query: ReportQuery):
    if kind not in REPORT_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown report type: {kind}")
    try:
        return services.aggregator.get_report(user_id, kind, query.start, query.end, query.days)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/dashboard")
def dashboard(
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return services.aggregator.dashboard_stats(user_id)


@router.get("/{kind}")
def report(
    kind: str,
    query: Annotated[ReportQuery, Query()],
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return _build(services, user_id, kind, query)


@router.get("/{kind}/export")
def export(
    kind: str,
    query: Annotated[ReportQuery, Query()],
    user_id: int = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    result = _build(services, user_id, kind, query)
    filename = f"{kind}-report-{result.start}-{result.end}.csv"
    return Response(
        content=export_csv(result),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
