# scripts/check_ledger.py
# Audita saldos: saldo actual == suma de entradas no liberadas.
# Uso: python scripts/check_ledger.py [account_id]
from __future__ import annotations

import sys

from sqlalchemy import select

from photoai import create_app, db
from photoai.ledger import LedgerStore
from photoai.models import Account


def main() -> int:
    app = create_app()
    with app.app_context():
        ledger = LedgerStore()
        if len(sys.argv) > 1:
            ids = [sys.argv[1]]
        else:
            ids = list(db.session.execute(select(Account.id).order_by(Account.id)).scalars())

        bad = 0
        for account_id in ids:
            balance, expected = ledger.audit(account_id)
            flag = "OK " if balance == expected else "MAL"
            bad += balance != expected
            print(f"[{flag}] {account_id}: saldo={balance} esperado={expected}")
            for e in ledger.entries(account_id, limit=10):
                print("   ledger:", e.id, e.job_id, e.reason, e.amount, e.status, e.created_at)

    return 1 if bad else 0


if __name__ == "__main__":
    sys.exit(main())
