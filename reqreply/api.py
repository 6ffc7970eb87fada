"""HTTP front end of the requester service

API Endpoints:
- POST /api/request/sync/{subject} - Request and wait for the reply
- POST /api/request/async/{subject} - Request started in the background, then awaited
- POST /api/request/custom-timeout/{subject}?timeoutMs=N - Request with its own deadline
- POST /api/request/parallel?subjects=a,b,c - Same payload to several subjects
- GET /api/request/stats - Connection and client counters

Request bodies are raw text. Request failures are reported in the
"response" field, never as HTTP errors.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from reqreply.client import RequestReplyClient
from reqreply.fanout import FanOutCoordinator
from reqreply.message import CallResult
from reqreply.transport import Transport

logger = logging.getLogger(__name__)


# ============================================================
# Response Models
# ============================================================

class RequestResponse(BaseModel):
    """Outcome of a single request"""
    subject: str
    request: str
    response: str
    duration_ms: int
    ok: bool
    error: Optional[str] = None
    timeout_ms: Optional[int] = None


class ParallelResponse(BaseModel):
    """Outcome of a fan-out request, results keep the order of subjects"""
    subjects: str
    request: str
    response: Dict[str, str]
    results: List[RequestResponse]
    duration_ms: int


class StatsResponse(BaseModel):
    summary: str
    transport: Dict[str, Any]
    client: Dict[str, Any]


def _to_response(result: CallResult, payload: str, duration_ms: int,
                 timeout_ms: Optional[int] = None) -> RequestResponse:
    return RequestResponse(
        subject=result.subject,
        request=payload,
        response=result.describe(),
        duration_ms=duration_ms,
        ok=result.ok,
        error=result.error.value if result.error else None,
        timeout_ms=timeout_ms,
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def _read_payload(request: Request) -> str:
    """Request body as text, 400 when it is not valid UTF-8"""
    try:
        return (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="request body must be UTF-8 text")


# ============================================================
# Routes
# ============================================================

def create_router() -> APIRouter:
    router = APIRouter(prefix="/api/request")

    def _client(request: Request) -> RequestReplyClient:
        return request.app.state.client

    @router.post("/sync/{subject}", response_model=RequestResponse, response_model_exclude_none=True)
    async def send_sync_request(subject: str, request: Request):
        """Send a request and wait for the reply"""
        payload = await _read_payload(request)
        logger.info(f"Received sync request for subject: {subject}")
        start = time.monotonic()
        result = await _client(request).call(subject, payload)
        return _to_response(result, payload, _elapsed_ms(start))

    @router.post("/async/{subject}", response_model=RequestResponse, response_model_exclude_none=True)
    async def send_async_request(subject: str, request: Request):
        """Start the request, then await its pending handle"""
        payload = await _read_payload(request)
        logger.info(f"Received async request for subject: {subject}")
        start = time.monotonic()
        pending = await _client(request).begin(subject, payload)
        result = await pending.result()
        return _to_response(result, payload, _elapsed_ms(start))

    @router.post("/custom-timeout/{subject}", response_model=RequestResponse,
                 response_model_exclude_none=True)
    async def send_request_with_custom_timeout(
        subject: str,
        request: Request,
        timeout_ms: int = Query(default=3000, alias="timeoutMs", gt=0),
    ):
        """Send a request with its own deadline"""
        payload = await _read_payload(request)
        logger.info(f"Received request with custom timeout: {timeout_ms} ms")
        start = time.monotonic()
        result = await _client(request).call(subject, payload, timeout=timeout_ms / 1000)
        return _to_response(result, payload, _elapsed_ms(start), timeout_ms=timeout_ms)

    @router.post("/parallel", response_model=ParallelResponse)
    async def send_parallel_requests(request: Request, subjects: str = Query(...)):
        """Send the same payload to every subject of a comma-separated list"""
        subject_list = [s.strip() for s in subjects.split(",") if s.strip()]
        if not subject_list:
            raise HTTPException(status_code=400, detail="subjects cannot be empty")
        payload = await _read_payload(request)
        logger.info(f"Received parallel request for {len(subject_list)} subjects")
        start = time.monotonic()
        results = await request.app.state.fan_out.fan_out(subject_list, payload)
        return ParallelResponse(
            subjects=", ".join(subject_list),
            request=payload,
            response=FanOutCoordinator.summarize(results),
            results=[_to_response(r, payload, int(r.duration_ms)) for r in results],
            duration_ms=_elapsed_ms(start),
        )

    @router.get("/stats", response_model=StatsResponse)
    async def get_stats(request: Request):
        """Connection counters"""
        stats = request.app.state.transport.stats()
        return StatsResponse(
            summary=stats.describe(),
            transport=stats.model_dump(),
            client=_client(request).get_stats(),
        )

    return router


# ============================================================
# Application
# ============================================================

def create_app(transport: Transport, client: Optional[RequestReplyClient] = None,
               fan_out: Optional[FanOutCoordinator] = None, *,
               manage_transport: bool = True) -> FastAPI:
    """Build the requester application

    Args:
        transport: Transport the requests go through
        client: Request/reply client, built on the transport if None
        fan_out: Fan-out coordinator, built on the client if None
        manage_transport: Start and stop the transport with the application
    """
    client = client if client is not None else RequestReplyClient(transport)
    fan_out = fan_out if fan_out is not None else FanOutCoordinator(client)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_transport:
            await transport.start()
        try:
            yield
        finally:
            await client.close()
            if manage_transport:
                try:
                    await transport.stop()
                except Exception as e:
                    logger.error(f"Error stopping transport: {e}")

    app = FastAPI(
        title="Requester Service",
        description="HTTP front end for broker request/reply calls",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.transport = transport
    app.state.client = client
    app.state.fan_out = fan_out
    app.include_router(create_router())
    return app
