"""
Intake Router - ``/create-patient`` for external automations.

Authenticated with a static bearer key instead of a user session. Every
response, including errors, carries permissive CORS headers.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from ..config import settings
from ..core.middleware import SlidingWindowRateLimiter
from ..core.security import bearer_token_matches
from ..database import get_db
from ..dependencies import get_object_store, get_patient_store, get_rate_limiter
from ..exceptions import AppException, error_envelope
from .service import bad_request, create_intake_patient, parse_request, server_error

# Set up logging
logger = logging.getLogger(__name__)

router = APIRouter(tags=["Intake"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def client_identity(request: Request) -> str:
    """First ``X-Forwarded-For`` entry, else ``X-Real-IP``, else ``unknown``."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or "unknown"


def check_authorization(authorization) -> None:
    if not settings.intake_api_key:
        logger.error("INTAKE_API_KEY is not configured")
        raise server_error("Intake API key is not configured")
    if not authorization or not authorization.startswith("Bearer "):
        logger.error("Missing or invalid Authorization header")
        raise AppException(
            status.HTTP_401_UNAUTHORIZED,
            "Unauthorized: Missing or invalid Authorization header"
        )
    if not bearer_token_matches(authorization, settings.intake_api_key):
        logger.error("Invalid Bearer token")
        raise AppException(status.HTTP_401_UNAUTHORIZED, "Unauthorized: Invalid token")


@router.options("/create-patient", include_in_schema=False)
async def create_patient_preflight():
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.post("/create-patient")
async def create_patient(
    request: Request,
    db: Session = Depends(get_db),
    records=Depends(get_patient_store),
    objects=Depends(get_object_store),
    limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter)
):
    """
    Create a patient from an automation.

    Body (JSON): ``firstName``, ``lastName`` (required), ``email``, ``status``
    and ``pdf`` as ``{"filename": ..., "data": <base64>}``.
    """
    identity = client_identity(request)
    if not limiter.hit(identity):
        logger.error(f"Rate limit exceeded for IP: {identity}")
        return error_envelope(
            status.HTTP_429_TOO_MANY_REQUESTS,
            f"Rate limit exceeded. Maximum {limiter.limit} requests per minute. Please try again later.",
            headers=CORS_HEADERS
        )

    try:
        check_authorization(request.headers.get("authorization"))
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Malformed JSON body: {str(e)}")
            raise bad_request("Invalid JSON body")

        payload = parse_request(body)
        result = await create_intake_patient(
            db, records, objects, payload,
            bucket=settings.cost_estimates_bucket,
            max_pdf_bytes=settings.intake_max_pdf_bytes,
            signed_url_ttl=settings.signed_url_ttl_seconds
        )
    except AppException as e:
        return error_envelope(e.status_code, e.detail, headers=CORS_HEADERS)
    except Exception:
        logger.exception("Unexpected error in intake")
        return error_envelope(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", headers=CORS_HEADERS
        )

    return JSONResponse(content=result.model_dump(by_alias=True), headers=CORS_HEADERS)
