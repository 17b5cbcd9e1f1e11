#!/usr/bin/env python3
"""
Re-send the reply email for a completed transaction

Looks the transaction up by its on-chain hash and sends the success reply to
the sender again, threaded onto the original email when known.

Usage:
    python -m scripts.send_reply_email <tx_hash>
"""

import argparse
import json
import sys

# Add backend to path
sys.path.insert(0, '.')

from sqlalchemy import select

from emailpay.core.transactions.models import EmailTransaction, TransactionStatus
from emailpay.infrastructure.database import SessionLocal


def main():
    parser = argparse.ArgumentParser(
        description='Re-send the reply email for a completed transaction',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('tx_hash', type=str, help='On-chain transaction hash (0x...)')
    args = parser.parse_args()

    from scripts._bootstrap import build_container
    container = build_container()

    db = SessionLocal()
    try:
        tx = db.execute(
            select(EmailTransaction).where(EmailTransaction.tx_hash == args.tx_hash.lower())
        ).scalar_one_or_none()

        if tx is None or tx.status != TransactionStatus.COMPLETED:
            print(json.dumps({
                "job": "send_reply_email",
                "tx_hash": args.tx_hash,
                "error": "Completed transaction with this hash not found",
                "exit_code": 1,
            }), file=sys.stderr)
            sys.exit(1)

        sent = container.notifier.transaction_completed(tx)
        print(json.dumps({
            "job": "send_reply_email",
            "tx_id": tx.tx_id,
            "tx_hash": tx.tx_hash,
            "to": tx.sender_email,
            "sent": sent,
            "exit_code": 0 if sent else 1,
        }, indent=2))
        sys.exit(0 if sent else 1)
    finally:
        db.close()
        container.close()


if __name__ == '__main__':
    main()
