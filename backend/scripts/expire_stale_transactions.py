#!/usr/bin/env python3
"""
Expire stale pending transactions

Marks pending transactions whose expiry has passed as expired (and notifies
the senders). With --older-than-minutes, pending transactions created longer
ago than that are expired too, even if their expiry is still in the future.

Usage:
    python -m scripts.expire_stale_transactions --dry-run
    python -m scripts.expire_stale_transactions
    python -m scripts.expire_stale_transactions --older-than-minutes 60
"""

import argparse
import json
import sys
from datetime import timedelta
from typing import Any, Dict, Optional

# Add backend to path
sys.path.insert(0, '.')

from sqlalchemy.orm import Session

from emailpay.infrastructure.database import SessionLocal
from emailpay.services.notifications import format_amount
from emailpay.services.transaction_engine import TransactionEngine


def run(db: Session, engine: TransactionEngine, older_than: Optional[timedelta], dry_run: bool) -> Dict[str, Any]:
    stale = engine.find_stale_transactions(db, older_than)
    output: Dict[str, Any] = {
        "job": "expire_stale_transactions",
        "dry_run": dry_run,
        "found": len(stale),
        "transactions": [
            {
                "tx_id": tx.tx_id,
                "amount": format_amount(tx.amount),
                "asset": tx.asset,
                "sender_email": tx.sender_email,
                "recipient_email": tx.recipient_email,
            }
            for tx in stale
        ],
    }
    output["expired"] = 0 if dry_run else engine.expire_stale_transactions(db, older_than)
    return output


def main():
    parser = argparse.ArgumentParser(
        description='Expire stale pending transactions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        '--older-than-minutes',
        type=int,
        default=None,
        help='Also expire pending transactions created more than N minutes ago'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='List stale transactions without changing them'
    )
    args = parser.parse_args()

    from scripts._bootstrap import build_container
    container = build_container()
    older_than = timedelta(minutes=args.older_than_minutes) if args.older_than_minutes else None

    db = SessionLocal()
    try:
        output = run(db, container.engine, older_than, args.dry_run)
        output["exit_code"] = 0
        print(json.dumps(output, indent=2))
    finally:
        db.close()
        container.close()


if __name__ == '__main__':
    main()
