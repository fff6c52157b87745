# recordanchor/cli/main.py

"""
recordanchor CLI
----------------

Provides:
  - Running the anchoring HTTP service
  - Creating batches and checking proofs against a running service
  - Offline verification of saved proofs
"""

from __future__ import annotations

import argparse
from typing import List, Optional

from recordanchor.cli import anchor_commands
from recordanchor.cli.anchor_commands import DEFAULT_URL


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="recordanchor", description="recordanchor CLI")
    parser.add_argument(
        "--output", "-o",
        choices=["table", "json"],
        default="table",
        help="Output format",
    )
    parser.add_argument("--url", default=DEFAULT_URL, help="Base URL of a running service")

    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve", help="Run the HTTP service")
    p_serve.add_argument("--host", default=None, help="Bind address (default from settings)")
    p_serve.add_argument("--port", type=int, default=None, help="Port (default from settings)")
    p_serve.set_defaults(func=anchor_commands.serve)

    p_pending = sub.add_parser("pending", help="Show pending record count")
    p_pending.set_defaults(func=anchor_commands.pending)

    p_batch = sub.add_parser("batch", help="Create and anchor a batch of pending records")
    p_batch.set_defaults(func=anchor_commands.batch)

    p_verify = sub.add_parser("verify", help="Verify a record's inclusion and integrity")
    p_verify.add_argument("identity", help="Record identity")
    p_verify.set_defaults(func=anchor_commands.verify)

    p_proof = sub.add_parser("verify-proof", help="Check a saved proof offline")
    p_proof.add_argument("proof_file", help="Proof JSON (verify response or its proof object)")
    p_proof.add_argument("--record", default=None, help="Record JSON to check against the leaf")
    p_proof.set_defaults(func=anchor_commands.verify_proof)

    p_status = sub.add_parser("status", help="Show service status")
    p_status.set_defaults(func=anchor_commands.status)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
