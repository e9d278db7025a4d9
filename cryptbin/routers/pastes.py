# cryptbin/routers/pastes.py
"""
Paste endpoints.

POST   /v1/pastes                      - Create a paste
GET    /v1/pastes/{paste_id}           - Read a paste and its comments
DELETE /v1/pastes/{paste_id}           - Delete a paste (deletetoken query param)
POST   /v1/pastes/{paste_id}/comments  - Comment on a paste with open discussion
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request

from cryptbin.config import get_settings
from cryptbin.persistence.traffic_limiter import resolve_client_address
from cryptbin.schemas.paste import (
    CommentCreatedResponse,
    PasteCreatedResponse,
    PasteDeletedResponse,
    PasteResponse,
)
from cryptbin.services.paste_service import PasteService
from cryptbin.storage.factory import get_data_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/pastes", tags=["pastes"])


def get_paste_service() -> PasteService:
    """Dependency: a paste service bound to the configured data store."""
    return PasteService(get_data_store())


def get_client_address(request: Request) -> str:
    """Dependency: the client address, honouring the trusted proxy header."""
    header = get_settings().TRAFFIC_HEADER.replace("_", "-")
    peer = request.client.host if request.client else None
    return resolve_client_address(peer, request.headers, header)


@router.post("", response_model=PasteCreatedResponse)
def create_paste(
    payload: Any = Body(...),
    client_address: str = Depends(get_client_address),
    service: PasteService = Depends(get_paste_service),
) -> PasteCreatedResponse:
    result = service.create_paste(payload, client_address)
    return PasteCreatedResponse(
        id=result["id"],
        url=f"{router.prefix}/{result['id']}",
        deletetoken=result["deletetoken"],
    )


@router.get("/{paste_id}", response_model=PasteResponse)
def read_paste(
    paste_id: str,
    service: PasteService = Depends(get_paste_service),
) -> PasteResponse:
    return PasteResponse(**service.read_paste(paste_id))


@router.delete("/{paste_id}", response_model=PasteDeletedResponse)
def delete_paste(
    paste_id: str,
    deletetoken: str = Query(..., description="Deletion token returned on creation"),
    service: PasteService = Depends(get_paste_service),
) -> PasteDeletedResponse:
    service.delete_paste(paste_id, deletetoken)
    return PasteDeletedResponse(id=paste_id)


@router.post("/{paste_id}/comments", response_model=CommentCreatedResponse)
def create_comment(
    paste_id: str,
    payload: Any = Body(...),
    client_address: str = Depends(get_client_address),
    service: PasteService = Depends(get_paste_service),
) -> CommentCreatedResponse:
    result = service.create_comment(paste_id, payload, client_address)
    return CommentCreatedResponse(id=result["id"], url=f"{router.prefix}/{paste_id}")
