"""
Anchoring CLI commands.

Commands:
    recordanchor serve                          Run the HTTP service (uvicorn)
    recordanchor pending                        Pending record count
    recordanchor batch                          Create and anchor a batch
    recordanchor verify <identity>              Verify a record through the service
    recordanchor verify-proof <proof.json>      Check a saved proof offline
    recordanchor status                         Service health and batch summary
"""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, Optional

import requests

from recordanchor.merkle.codec import HashCodec
from recordanchor.merkle.tree import MerkleProof, verify_merkle_proof
from recordanchor.protocol.errors import AnchorError

DEFAULT_URL = "http://127.0.0.1:8080"
DEFAULT_TIMEOUT = 30.0


def serve(args) -> None:
    """Run the HTTP service."""
    import uvicorn

    from recordanchor.core.settings import get_settings
    from recordanchor.utils.logging import configure_logging

    settings = get_settings()
    configure_logging(settings.runtime.log_level)

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    uvicorn.run(
        "recordanchor.web.app:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=settings.runtime.log_level.lower(),
    )


def pending(args) -> None:
    data = _request("GET", args, "/anchor/pending")
    _print_output(data, _fmt(args), "pending")


def batch(args) -> None:
    data = _request("POST", args, "/anchor/batch")
    _print_output(data, _fmt(args), "batch")
    if not data.get("success"):
        sys.exit(2)


def verify(args) -> None:
    data = _request("GET", args, f"/anchor/verify/{args.identity}")
    _print_output(data, _fmt(args), "verify")
    if not (data.get("success") and data.get("verified")):
        sys.exit(2)


def verify_proof(args) -> None:
    """
    Check a proof file without contacting the service.

    Accepts the `proof` object of a verify response, or the whole response.
    With --record, the record's recomputed leaf must also match.
    """
    document = _read_json_file(args.proof_file)
    result = check_proof(document, _read_json_file(args.record) if args.record else None)
    _print_output(result, _fmt(args), "verify_proof")
    if not result["verified"]:
        sys.exit(2)


def check_proof(document: Dict[str, Any], record: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    proof_data = document.get("proof", document)
    try:
        proof = MerkleProof.from_dict(proof_data)
    except (KeyError, TypeError, ValueError) as e:
        return {"verified": False, "path_valid": False, "reason": f"Malformed proof: {e}"}

    result: Dict[str, Any] = {
        "patient_id": proof_data.get("patient_id"),
        "leaf_index": proof.leaf_index,
        "root_hash": proof.root_hash,
        "path_valid": verify_merkle_proof(proof),
    }

    if record is None:
        result["verified"] = result["path_valid"]
        result["reason"] = "Path reconstructs root" if result["path_valid"] else "Path does not reconstruct root"
        return result

    try:
        leaf_hex = HashCodec().digest_hex(record)
    except AnchorError as e:
        result.update(verified=False, record_match=False, reason=str(e))
        return result

    result["record_match"] = leaf_hex == proof.leaf_hash
    result["verified"] = result["path_valid"] and result["record_match"]
    if result["verified"]:
        result["reason"] = "Record matches anchored content"
    elif not result["path_valid"]:
        result["reason"] = "Path does not reconstruct root"
    else:
        result["reason"] = "Record content differs from anchored content"
    return result


def status(args) -> None:
    health = _request("GET", args, "/health")
    batches = _request("GET", args, "/anchor/batches")
    count = _request("GET", args, "/anchor/pending")

    latest = batches["batches"][-1] if batches.get("batches") else None
    data = {
        "url": _base_url(args),
        "status": health.get("status"),
        "version": health.get("version"),
        "pending_count": count.get("pending_count"),
        "total_batches": batches.get("total_batches"),
        "latest_batch_id": latest["batch_id"] if latest else None,
        "latest_root_hash": latest["root_hash_hex"] if latest else None,
    }
    _print_output(data, _fmt(args), "status")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _fmt(args) -> str:
    return getattr(args, "output", "table")


def _base_url(args) -> str:
    return (getattr(args, "url", None) or DEFAULT_URL).rstrip("/")


def _request(method: str, args, path: str) -> Dict[str, Any]:
    url = _base_url(args) + path
    try:
        resp = requests.request(method, url, timeout=DEFAULT_TIMEOUT)
    except requests.RequestException as e:
        print(f"Error: cannot reach {url}: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        data = resp.json()
    except ValueError:
        print(f"Error: {resp.status_code} {resp.text[:200]}", file=sys.stderr)
        sys.exit(1)

    if resp.status_code >= 400:
        err = data.get("error", {}) if isinstance(data, dict) else {}
        print(
            f"Error: {err.get('type', resp.status_code)}: {err.get('message', data)}"
            f" (req_uuid={err.get('req_uuid', '-')})",
            file=sys.stderr,
        )
        sys.exit(1)
    return data


def _read_json_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        print(f"Error: cannot read {path}: {e}", file=sys.stderr)
        sys.exit(1)


def _print_output(data: Dict[str, Any], fmt: str, context: str = "") -> None:
    """Print output in requested format."""
    if fmt == "json":
        print(json.dumps(data, indent=2))
        return

    if context == "pending":
        print(f"Pending records:    {data.get('pending_count')}")

    elif context == "batch":
        if not data.get("success"):
            print(data.get("message", "Batch not created"))
            return
        b = data["batch"]
        print(f"Batch #{b['batch_id']} anchored")
        print("=" * 50)
        print(f"Root hash:          {b['root_hash_hex']}")
        print(f"Algorithm:          {b['algo_id']}")
        print(f"Records:            {b['record_count']}")
        print(f"Timestamp:          {b['timestamp']}")
        print(f"Meta URI:           {b['meta_uri']}")
        print(f"Transaction:        {data.get('tx_hash')}")

    elif context == "verify":
        if not data.get("success"):
            print(data.get("message", "Not found"))
            return
        proof = data.get("proof", {})
        print(f"Record:             {data.get('patient_id')}")
        print(f"Verified:           {'YES' if data.get('verified') else 'NO'}")
        print(f"Leaf index:         {proof.get('leaf_index')}")
        print(f"Leaf hash:          {proof.get('leaf_hash')}")
        print(f"Root hash:          {proof.get('root_hash')}")
        print(f"Path length:        {len(proof.get('proof_hashes', []))}")
        print(data.get("message", ""))

    elif context == "verify_proof":
        print(f"Verified:           {'YES' if data.get('verified') else 'NO'}")
        print(f"Path valid:         {data.get('path_valid')}")
        if "record_match" in data:
            print(f"Record match:       {data['record_match']}")
        print(data.get("reason", ""))

    elif context == "status":
        print(f"recordanchor {data.get('version') or ''} at {data.get('url')}")
        print("=" * 40)
        print(f"Status:             {data.get('status')}")
        print(f"Pending records:    {data.get('pending_count')}")
        print(f"Total batches:      {data.get('total_batches')}")
        print(f"Latest batch:       {data.get('latest_batch_id') or '-'}")
        print(f"Latest root:        {data.get('latest_root_hash') or '-'}")

    else:
        print(json.dumps(data, indent=2))
