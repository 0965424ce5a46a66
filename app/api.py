"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends, Request, Response, status

from app.schemas import HealthResponse
from services.relay import TorqueRelay, build_default_relay

ACK_BODY = "OK!"

router = APIRouter()


def get_relay() -> TorqueRelay:
    return build_default_relay()


def _first_values(request: Request) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for key, value in request.query_params.multi_items():
        params.setdefault(key, value)
    return params


@router.get(
    "/api/torque",
    summary="Receive a Torque upload and relay it to Warp10.",
    status_code=status.HTTP_200_OK,
)
def torque_upload(
    request: Request,
    relay: TorqueRelay = Depends(get_relay),
) -> Response:
    # Torque keeps re-sending until acknowledged; the reply is fixed.
    relay.relay(_first_values(request))
    return Response(content=ACK_BODY, media_type="text/html")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(relay: TorqueRelay = Depends(get_relay)) -> HealthResponse:
    return HealthResponse(keys_loaded=len(relay.directory), failure_policy=relay.failure_policy)


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
