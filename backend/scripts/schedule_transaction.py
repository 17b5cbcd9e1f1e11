#!/usr/bin/env python3
"""
Schedule a pending transaction for execution

Enqueues emailpay-execute-transaction for the given id. Executing a
transaction that is no longer pending is a logged no-op, so this is safe to
run more than once.

Usage:
    python -m scripts.schedule_transaction <tx_id>
"""

import argparse
import json
import sys

# Add backend to path
sys.path.insert(0, '.')

from emailpay.infrastructure.database import SessionLocal
from emailpay.infrastructure.redis_client import get_queue_connection
from emailpay.infrastructure.settings import get_settings
from emailpay.services.transaction_engine import EXECUTE_TASK, TransactionEngine
from emailpay.workers.scheduler import RQJobScheduler


def main():
    parser = argparse.ArgumentParser(
        description='Schedule a pending transaction for execution',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('tx_id', type=str, help='Transaction id to execute')
    args = parser.parse_args()

    settings = get_settings()

    db = SessionLocal()
    try:
        tx = TransactionEngine.get_transaction(db, args.tx_id)
    finally:
        db.close()

    if tx is None:
        print(json.dumps({"job": "schedule_transaction", "tx_id": args.tx_id, "error": "Transaction not found", "exit_code": 1}), file=sys.stderr)
        sys.exit(1)

    scheduler = RQJobScheduler(get_queue_connection(), settings.JOB_QUEUE_NAME)
    scheduler.run_now(EXECUTE_TASK, {"tx_id": args.tx_id})

    print(json.dumps({
        "job": "schedule_transaction",
        "tx_id": args.tx_id,
        "status": tx.status.value,
        "queue": settings.JOB_QUEUE_NAME,
        "exit_code": 0,
    }, indent=2))


if __name__ == '__main__':
    main()
