"""
/records endpoints - thin HTTP adapter over RecordStore.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..core.dao import RecordStore
from .schemas import ApiResponse, RecordCreateRequest, RecordReplaceRequest

router = APIRouter(prefix="/records", tags=["records"])


def get_store(request: Request) -> RecordStore:
    """Resolve the store opened by the application lifespan."""
    return request.app.state.store


def respond(status_code: int = 200, **fields) -> JSONResponse:
    """Wrap fields in the API envelope. `data` is kept even when it is None."""
    envelope = ApiResponse(success=status_code < 400, **fields)
    body = {"success": envelope.success}
    for name in ("data", "error", "message"):
        if name in fields:
            body[name] = getattr(envelope, name)
    return JSONResponse(status_code=status_code, content=body)


@router.post("")
def create_or_append_record(body: RecordCreateRequest, store: RecordStore = Depends(get_store)):
    """Create a record for run_key, or append the payload to the existing one."""
    record, is_new = store.create_or_append(body.run_key, body.payload)

    if record is None:
        # Deleted by a retention sweep mid-append; nothing was written
        return respond(data=None, message="Record expired before the append was applied")

    return respond(
        status_code=201 if is_new else 200,
        data=record.to_dict(),
        message="Record created" if is_new else "Record appended",
    )


@router.get("")
def list_records(
    run_key: Optional[str] = Query(None, description="Exact run_key match"),
    workflow_run_id: Optional[str] = Query(None, include_in_schema=False),
    start_time: Optional[str] = Query(None, description="Inclusive lower bound on created_at (ISO 8601)"),
    end_time: Optional[str] = Query(None, description="Inclusive upper bound on created_at (ISO 8601)"),
    limit: Optional[int] = Query(None, description="Page size; clamped to the configured maximum"),
    offset: Optional[int] = Query(None, description="Rows to skip"),
    store: RecordStore = Depends(get_store),
):
    result = store.list(
        run_key=run_key or workflow_run_id,
        start=start_time,
        end=end_time,
        limit=limit,
        offset=offset,
    )
    return respond(data=result.to_dict())


@router.get("/stats")
def get_stats(store: RecordStore = Depends(get_store)):
    return respond(data=store.stats().to_dict())


@router.post("/cleanup")
def run_cleanup(store: RecordStore = Depends(get_store)):
    """Trigger a retention pass immediately."""
    report = store.run_cleanup_now()
    return respond(
        data=report.to_dict(),
        message=f"Cleanup complete, {report.total_deleted} records deleted",
    )


@router.get("/{run_key}")
def get_record(run_key: str, store: RecordStore = Depends(get_store)):
    """Fetch one record. A missing run_key yields data: null rather than 404."""
    record = store.get(run_key)
    return respond(data=record.to_dict() if record else None)


@router.put("/{run_key}")
def replace_record(run_key: str, body: RecordReplaceRequest, store: RecordStore = Depends(get_store)):
    record = store.replace(run_key, body.payload)
    if record is None:
        return respond(status_code=404, error="Record not found")

    return respond(data=record.to_dict(), message="Record updated")


@router.delete("/{run_key}")
def delete_record(run_key: str, store: RecordStore = Depends(get_store)):
    if not store.remove(run_key):
        return respond(status_code=404, error="Record not found")

    return respond(message="Record deleted")
