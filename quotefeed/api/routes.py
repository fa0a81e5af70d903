from fastapi import APIRouter, HTTPException, Request

router = APIRouter()


def _service(request: Request):
    service = request.app.state.ingest_service
    if service is None:
        raise HTTPException(status_code=503, detail='INGEST_SERVICE_NOT_READY')
    return service


@router.get('/snapshots')
def list_snapshots(request: Request):
    service = _service(request)
    return [row.model_dump() for row in service.universe_rows()]


@router.get('/snapshots/{symbol}')
def get_snapshot(symbol: str, request: Request):
    service = _service(request)
    row = service.snapshot(symbol)
    if row is None:
        raise HTTPException(status_code=404, detail='snapshot not found')
    return row.model_dump()


@router.get('/stream/status')
def stream_status(request: Request):
    return _service(request).stream_status()


@router.post('/retry/trigger')
def trigger_retry(request: Request):
    return _service(request).trigger_retry()


@router.get('/metrics/ingest')
def ingest_metrics(request: Request):
    return _service(request).metrics()
