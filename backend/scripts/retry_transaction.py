#!/usr/bin/env python3
"""
Retry a failed or expired transaction

Creates a fresh transaction with the same sender, recipient, amount and
asset (meta.retry_of points at the original) and schedules it. Only failed
transactions with a retryable error (CUSTODY_SESSION, RPC_ERROR, TIMEOUT,
INSUFFICIENT_FUNDS) or expired transactions can be retried.

Usage:
    python -m scripts.retry_transaction <tx_id>
"""

import argparse
import json
import sys
from typing import Any, Dict

# Add backend to path
sys.path.insert(0, '.')

from sqlalchemy.orm import Session

from emailpay.infrastructure.database import SessionLocal
from emailpay.services.transaction_engine import TransactionEngine, TransactionEngineError


def run(db: Session, engine: TransactionEngine, tx_id: str) -> Dict[str, Any]:
    try:
        retried = engine.retry_transaction(db, tx_id)
    except TransactionEngineError as e:
        return {"job": "retry_transaction", "tx_id": tx_id, "error": str(e), "exit_code": 1}
    return {
        "job": "retry_transaction",
        "tx_id": tx_id,
        "retry_tx_id": retried.tx_id,
        "status": retried.status.value,
        "exit_code": 0,
    }


def main():
    parser = argparse.ArgumentParser(
        description='Retry a failed or expired transaction',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('tx_id', type=str, help='Transaction id to retry')
    args = parser.parse_args()

    from scripts._bootstrap import build_container
    container = build_container()

    db = SessionLocal()
    try:
        output = run(db, container.engine, args.tx_id)
    finally:
        db.close()
        container.close()

    print(json.dumps(output, indent=2), file=sys.stderr if output["exit_code"] else sys.stdout)
    sys.exit(output["exit_code"])


if __name__ == '__main__':
    main()
