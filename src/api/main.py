"""
FastAPI app exposing the missing persons artifact written by the sync job.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from src.services.sync_config import DEFAULT_OUTPUT_PATH

ARTIFACT_PATH = Path(os.getenv("MISSING_PERSONS_ARTIFACT", str(DEFAULT_OUTPUT_PATH)))
LOGGER = logging.getLogger("missing_persons_api")


def get_artifact() -> dict[str, Any]:
    try:
        with ARTIFACT_PATH.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=503, detail="Missing persons data not synced yet") from exc
    except (OSError, ValueError) as exc:
        LOGGER.warning("Failed to read artifact at %s", ARTIFACT_PATH, exc_info=True)
        raise HTTPException(status_code=503, detail="Missing persons data unavailable") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=503, detail="Missing persons data unavailable")
    return payload


class MissingFromOut(BaseModel):
    city: Optional[str] = None
    county: Optional[str] = None
    state: Optional[str] = None


class ContactOut(BaseModel):
    agency: str = ""
    phone: str = ""


class CaseOut(BaseModel):
    id: str
    sourceId: str
    name: str
    age: Optional[int] = None
    missingDate: Optional[str] = None
    missingFrom: MissingFromOut
    photoUrl: str = ""
    posterUrl: str = ""
    contact: ContactOut = Field(default_factory=ContactOut)
    physical: Optional[dict[str, str]] = None
    dateOfBirth: Optional[str] = None
    circumstances: Optional[str] = None
    summary: str = ""
    caseType: str = Field("Missing", description="Classification from enrichment")
    lastSeenWearing: str = ""
    enrichedByLlm: bool = False
    syncedAt: Optional[str] = None


class CaseListOut(BaseModel):
    lastSync: Optional[str] = None
    total: int
    cases: list[CaseOut]


app = FastAPI(title="Missing Persons API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:4321"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/missing-persons", response_model=CaseListOut)
def list_cases(
    county: Optional[str] = Query(default=None, description='County filter, e.g. "Alameda County".'),
    artifact: dict[str, Any] = Depends(get_artifact),
) -> CaseListOut:
    LOGGER.info("Listing missing persons county=%s", county)
    cases = [case for case in artifact.get("cases") or [] if isinstance(case, dict)]
    if county:
        wanted = county.strip().lower()
        cases = [
            case for case in cases if ((case.get("missingFrom") or {}).get("county") or "").lower() == wanted
        ]
    return CaseListOut(
        lastSync=artifact.get("lastSync"),
        total=len(cases),
        cases=[CaseOut(**case) for case in cases],
    )


@app.get("/api/missing-persons/{case_id}", response_model=CaseOut)
def get_case(case_id: str, artifact: dict[str, Any] = Depends(get_artifact)) -> CaseOut:
    for case in artifact.get("cases") or []:
        if isinstance(case, dict) and case.get("id") == case_id:
            return CaseOut(**case)
    raise HTTPException(status_code=404, detail=f"Unknown case {case_id}")
