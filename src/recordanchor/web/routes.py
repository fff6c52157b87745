"""
HTTP routes.

Anchoring contract (field names are consumed by the dashboard as-is):

  POST /anchor/batch
    {success, batch?: {batch_id, root_hash_hex, algo_id, record_count,
     timestamp, meta_uri}, tx_hash?, patient_ids?, message}

  GET /anchor/pending
    {pending_count}

  GET /anchor/verify/{identity}
    {success, patient_id?, proof?: {leaf_hash, leaf_index, proof_hashes,
     root_hash, patient_id}, verified?, message}

    success=false         -> no anchored batch contains the record
    success=true, verified=false -> proof exists, content does not match

Record routes (/patient) store a record and queue its digest under
runtime.record_lock before the response is returned.

Batch creation and record writes are plain `def` endpoints and run in the
FastAPI worker thread pool.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from recordanchor import __version__
from recordanchor.core.runtime import AnchorRuntime
from recordanchor.proof.service import VerificationStatus
from recordanchor.protocol.errors import BatchNotFoundError
from recordanchor.utils.timestamps import now_iso

logger = logging.getLogger("recordanchor.web")

router = APIRouter()


def get_runtime(request: Request) -> AnchorRuntime:
    return request.app.state.runtime


# ------------------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------------------

class PatientForCreate(BaseModel):
    name: str
    date_of_birth: str
    medical_record_number: str
    gender: Optional[str] = None
    address: Optional[str] = None


class PatientForUpdate(BaseModel):
    name: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None


# ------------------------------------------------------------------------------
# Anchoring
# ------------------------------------------------------------------------------

@router.post("/anchor/batch")
def create_batch(runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    logger.info("HANDLER create_batch")
    result = runtime.service.create_batch()
    if result is None:
        return {"success": False, "message": "No pending records to anchor"}

    body = {"success": True}
    body.update(result.to_dict())
    body["message"] = "Batch created and anchored to ledger"
    return body


@router.get("/anchor/pending")
def pending_count(runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, int]:
    return {"pending_count": runtime.service.pending_count()}


@router.get("/anchor/verify/{identity}")
def verify_record(identity: str, runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    logger.info("HANDLER verify_record: %s", identity)
    result = runtime.proofs.verify(identity, runtime.records.get(identity))

    if result.status is VerificationStatus.NOT_FOUND:
        return {
            "success": False,
            "message": "Patient not found in any anchored batch. Create a batch first.",
        }

    if result.verified:
        message = "Patient record cryptographically verified in Merkle tree"
    elif result.status is VerificationStatus.LEDGER_MISMATCH:
        message = f"Verification failed - {result.reason}"
    else:
        message = f"Verification failed - data may have been tampered with ({result.reason})"

    return {
        "success": True,
        "patient_id": identity,
        "proof": result.proof.to_wire(),
        "verified": result.verified,
        "message": message,
    }


@router.get("/anchor/batches")
def list_batches(runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    batches = runtime.store.list_batches()
    return {
        "total_batches": len(batches),
        "batches": [dict(b.to_wire(), tx_hash=b.tx_ref) for b in batches],
    }


@router.get("/anchor/batches/{batch_id}")
def get_batch(batch_id: int, runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    batch = runtime.store.get_batch(batch_id)
    if batch is None:
        raise BatchNotFoundError(batch_id)
    return {
        "batch": batch.to_wire(),
        "tx_hash": batch.tx_ref,
        "patient_ids": list(batch.identities),
    }


# ------------------------------------------------------------------------------
# Records
# ------------------------------------------------------------------------------

def _store_and_queue(runtime: AnchorRuntime, record: Dict[str, Any], previous: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Save a record and queue its digest. Caller holds runtime.record_lock."""
    # Malformed records are rejected before anything is stored.
    runtime.codec.digest(record)
    saved = runtime.records.save(record)
    try:
        runtime.service.record_saved(saved)
    except Exception:
        if previous is None:
            runtime.records.delete(saved["id"])
        else:
            runtime.records.save(previous)
        raise
    return saved


@router.post("/patient")
def create_patient(body: PatientForCreate, runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    patient_id = str(uuid.uuid4())
    record = {
        "id": patient_id,
        "did": f"did:iota:anima:{patient_id}",
        "demographics": body.model_dump(),
        "created_at": now_iso(),
    }
    with runtime.record_lock:
        saved = _store_and_queue(runtime, record, None)
    logger.info("Created patient %s", patient_id)
    return saved


@router.get("/patient")
def list_patients(runtime: AnchorRuntime = Depends(get_runtime)) -> List[Dict[str, Any]]:
    return runtime.records.list()


@router.get("/patient/{identity}")
def get_patient(identity: str, runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    return runtime.records.require(identity)


@router.put("/patient/{identity}")
def update_patient(
    identity: str,
    body: PatientForUpdate,
    runtime: AnchorRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    with runtime.record_lock:
        previous = runtime.records.require(identity)
        record = dict(previous)
        demographics = dict(record.get("demographics") or {})
        demographics.update(body.model_dump(exclude_none=True))
        record["demographics"] = demographics
        record["updated_at"] = now_iso()
        saved = _store_and_queue(runtime, record, previous)
    logger.info("Updated patient %s (re-queued for anchoring)", identity)
    return saved


@router.delete("/patient/{identity}")
def delete_patient(identity: str, runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    with runtime.record_lock:
        removed = runtime.records.delete(identity)
    logger.info("Deleted patient %s", identity)
    return removed


# ------------------------------------------------------------------------------
# Health
# ------------------------------------------------------------------------------

@router.get("/health")
def health_check() -> Dict[str, str]:
    return {"status": "healthy", "service": "recordanchor", "version": __version__}


@router.get("/api/info")
def api_info(runtime: AnchorRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    return {
        "name": "recordanchor",
        "version": __version__,
        "description": "Merkle batch anchoring and inclusion proofs for off-chain records",
        "hash_algorithm": runtime.codec.algo_id,
        "ledger": runtime.ledger.name,
        "storage": runtime.settings.storage.mode.value,
        "endpoints": {
            "anchoring": [
                "POST /anchor/batch - Create Merkle batch and anchor its root",
                "GET /anchor/pending - Pending record count",
                "GET /anchor/verify/{id} - Inclusion proof and verification",
                "GET /anchor/batches - Committed batches",
            ],
            "records": [
                "POST /patient",
                "GET /patient",
                "GET /patient/{id}",
                "PUT /patient/{id}",
                "DELETE /patient/{id}",
            ],
        },
    }

