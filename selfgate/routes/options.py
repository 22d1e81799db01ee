"""
Policy configuration endpoints.

POST /api/saveOptions stores a policy under a key (usually one of the
tier keys the verify pipeline resolves to). GET /api/options/{key}
reads it back in wire form, or the default policy if none is stored.
"""

import logging

from fastapi import APIRouter, Request

from selfgate.errors import StoreError
from selfgate.models.schemas import PolicyRecord, SaveOptionsRequest, SaveOptionsResponse
from selfgate.routes.verify import error_response
from selfgate.store import PolicyStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/api/saveOptions",
    response_model=SaveOptionsResponse,
    summary="Save a verification policy",
    description=(
        "Replace the policy stored under userId. Country codes are ISO 3166-1 alpha-3, "
        "at most 40, no duplicates; minimumAge must be between 0 and 120."
    ),
    tags=["Configuration"],
)
async def save_options(body: SaveOptionsRequest, request: Request):
    store: PolicyStore = request.app.state.store

    try:
        created = await store.set(body.user_id, body.options.to_record())
    except StoreError as exc:
        logger.error("Saving policy %s failed: %s", body.user_id, exc)
        return error_response(exc)

    logger.info("Saved policy %s (created=%s)", body.user_id, created)
    return SaveOptionsResponse(message="Options saved successfully", created=created)


@router.get(
    "/api/options/{key}",
    response_model=PolicyRecord,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    summary="Read a verification policy",
    description="Returns the stored policy for key, or the default policy when none is stored.",
    tags=["Configuration"],
)
async def get_options(key: str, request: Request):
    store: PolicyStore = request.app.state.store

    try:
        return await store.get(key)
    except StoreError as exc:
        logger.error("Reading policy %s failed: %s", key, exc)
        return error_response(exc)
