# scripts/create_account.py
# Uso: python scripts/create_account.py <account_id> [creditos]
from __future__ import annotations

import sys

from photoai import create_app, db
from photoai.ledger import LedgerStore


def main() -> int:
    if len(sys.argv) < 2:
        print("Uso: python scripts/create_account.py <account_id> [creditos]")
        return 2

    account_id = sys.argv[1].strip()
    credits = int(sys.argv[2]) if len(sys.argv) > 2 else 0

    app = create_app()
    with app.app_context():
        ledger = LedgerStore()
        try:
            ledger.open_account(account_id)
            if credits > 0:
                ledger.grant(account_id, credits, note="script")
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        print(f"Cuenta lista: {account_id} saldo={ledger.balance(account_id)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
