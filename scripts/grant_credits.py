#!/usr/bin/env python3
"""
Top up an account's credits (creates the account when missing).
Run from the project root: python -m scripts.grant_credits ACCOUNT_ID AMOUNT [--token T] [--reason R]
Re-running with the same --token does not grant twice.
"""
import argparse
import os
import sys

# project root on PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from thumbgen.db.session import SessionLocal
from thumbgen.services.credits.guard import IdempotencyGuard
from thumbgen.services.credits.ledger import CreditLedger


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("account_id")
    parser.add_argument("amount", type=int)
    parser.add_argument("--token", default=None, help="idempotency token (default: random)")
    parser.add_argument("--reason", default="Manual grant")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        ledger = CreditLedger(db)
        if ledger.open_account(args.account_id):
            print(f"Created account {args.account_id}")
        guard = IdempotencyGuard(ledger)
        result = guard.grant(args.account_id, args.amount, args.token or guard.new_token(), args.reason)
        if not result.succeeded:
            print(f"Grant rejected: {result.failure_reason.value}")
            sys.exit(1)
        state = "already applied" if result.duplicate else "applied"
        print(f"Grant {state}; remaining balance: {result.remaining_balance}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
