"""
HTTP routes for the medication reminder API.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from med_reminder.db import DbClient, StorageUnavailable
from med_reminder.dependencies import get_db_client
from med_reminder.schemas import (
    DeleteResponse,
    HealthResponse,
    MedicationCreate,
    MedicationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/get-meds", response_model=list[MedicationResponse])
def get_meds(db: DbClient = Depends(get_db_client)):
    """List every stored entry, newest first."""
    return [MedicationResponse.from_record(record) for record in db.list_all()]


@router.post("/save-med", response_model=MedicationResponse, status_code=201)
def save_med(
    body: Any = Body(None),
    db: DbClient = Depends(get_db_client),
):
    """
    Store a new entry. Missing or non-text fields are stored as empty
    strings; stricter validation would break existing clients.
    """
    payload = MedicationCreate.from_body(body)
    record = db.insert(payload.name, payload.pattern, payload.relation)
    logger.info("Saved medication entry %s", record.id)
    return MedicationResponse.from_record(record)


@router.delete("/med/{entry_id}", response_model=DeleteResponse)
def delete_med(entry_id: str, db: DbClient = Depends(get_db_client)):
    # Unknown ids are reported as deleted too.
    if not db.delete_by_id(entry_id):
        logger.debug("Delete of unknown medication entry %s", entry_id)
    return DeleteResponse()


@router.get("/health", response_model=HealthResponse)
def health(db: DbClient = Depends(get_db_client)):
    try:
        db.ping()
    except StorageUnavailable as exc:
        logger.warning("Health check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "store": "unavailable"},
        )
    return HealthResponse(status="ok", store="ok")
