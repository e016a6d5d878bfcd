import sqlite3
from typing import Dict, Optional, Tuple

# ────────────────────────────────────────────────────────────────────────────
# SQLite persistence: settlement accounts + cycle state
# ────────────────────────────────────────────────────────────────────────────
def _db(path: str):
    con = sqlite3.connect(path)
    con.execute("""CREATE TABLE IF NOT EXISTS settlement (
        holder TEXT NOT NULL,
        mint TEXT NOT NULL,
        account TEXT NOT NULL,
        PRIMARY KEY (holder, mint)
    )""")
    con.execute("""CREATE TABLE IF NOT EXISTS cycle_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        carry TEXT NOT NULL,
        cursor INTEGER NOT NULL
    )""")
    return con


class SqliteSettlementStore:
    def __init__(self, path: str):
        self.path = path
        _db(path).close()

    def get(self, holder: str, mint: str) -> Optional[str]:
        con = _db(self.path)
        row = con.execute("SELECT account FROM settlement WHERE holder=? AND mint=?", (holder, mint)).fetchone()
        con.close()
        return row[0] if row else None

    def set(self, holder: str, mint: str, account: str):
        con = _db(self.path)
        con.execute("INSERT OR REPLACE INTO settlement(holder, mint, account) VALUES (?,?,?)", (holder, mint, account))
        con.commit(); con.close()

    def delete(self, holder: str, mint: str):
        con = _db(self.path)
        con.execute("DELETE FROM settlement WHERE holder=? AND mint=?", (holder, mint))
        con.commit(); con.close()


class MemorySettlementStore:
    def __init__(self):
        self.rows: Dict[Tuple[str, str], str] = {}

    def get(self, holder, mint):
        return self.rows.get((holder, mint))

    def set(self, holder, mint, account):
        self.rows[(holder, mint)] = account

    def delete(self, holder, mint):
        self.rows.pop((holder, mint), None)


class CycleStateStore:
    """Carry-over and payout cursor; carry kept as TEXT so it stays exact past 64 bits."""

    def __init__(self, path: str):
        self.path = path
        _db(path).close()

    def load(self) -> Tuple[int, int]:
        con = _db(self.path)
        row = con.execute("SELECT carry, cursor FROM cycle_state WHERE id=1").fetchone()
        con.close()
        if not row:
            return 0, 0
        return int(row[0]), int(row[1])

    def save(self, carry: int, cursor: int):
        con = _db(self.path)
        con.execute("INSERT OR REPLACE INTO cycle_state(id, carry, cursor) VALUES (1,?,?)", (str(int(carry)), int(cursor)))
        con.commit(); con.close()
