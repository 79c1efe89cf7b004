import json
import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .providers.base import CostProvider
from .schemas import CostRequest, CostResponse

LOG = logging.getLogger(__name__)

INVALID_PROVIDER = "Invalid cloud provider."

router = APIRouter()


def select_provider(providers: Mapping[str, CostProvider], cloud_provider: Any) -> Optional[CostProvider]:
    if not isinstance(cloud_provider, str):
        return None
    return providers.get(cloud_provider)


def _error_message(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


async def _read_body(request: Request) -> Dict[str, Any]:
    # missing, malformed or non-object bodies carry no discriminator
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


@router.post("/costs", openapi_extra={
    "requestBody": {"content": {"application/json": {"schema": CostRequest.model_json_schema()}}},
})
async def fetch_costs(request: Request):
    cost_request = CostRequest.model_validate(await _read_body(request))
    params = cost_request.model_dump()
    provider = select_provider(request.app.state.providers, cost_request.cloudProvider)
    if provider is None:
        return JSONResponse(status_code=400, content=CostResponse(success=False, message=INVALID_PROVIDER).body())

    LOG.info(f"Fetching costs from {provider.name}")
    try:
        costs = await run_in_threadpool(provider.fetch_costs, params)
    except Exception as e:
        LOG.exception(f"{provider.name} cost fetch failed: {e}")
        return JSONResponse(status_code=500, content=CostResponse(success=False, message=_error_message(e)).body())
    return CostResponse(success=True, costs=costs).body()
