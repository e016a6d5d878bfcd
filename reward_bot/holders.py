from typing import List

from . import config
from .logs import info, warn
from .models import Holder
from .retry import retry


class HolderSource:
    """Pages the DAS ``getTokenAccounts`` method for every non-empty account of one mint."""

    def __init__(self, ledger, mint: str, page_limit: int = config.HOLDER_PAGE_LIMIT,
                 attempts: int = config.RETRY_ATTEMPTS, delay: float = 2.0):
        self.ledger = ledger
        self.mint = mint
        self.page_limit = page_limit
        self.attempts = attempts
        self.delay = delay

    def _page(self, page: int, cursor):
        params = {
            "mint": self.mint,
            "limit": self.page_limit,
            "options": {"showZeroBalance": False},
        }
        # DAS accepts either pagination style; prefer the cursor once one is handed back
        if cursor:
            params["cursor"] = cursor
        else:
            params["page"] = page
        return self.ledger.rpc("getTokenAccounts", params) or {}

    def fetch(self) -> List[Holder]:
        holders: List[Holder] = []
        page, cursor = 1, None
        while True:
            try:
                res = retry(lambda: self._page(page, cursor), self.attempts, self.delay, label="holders_page")
            except Exception as e:
                warn("holders_page_failed", page=page, collected=len(holders), error=str(e))
                break
            rows = res.get("token_accounts") or []
            for row in rows:
                holders.append(Holder(address=row["owner"], balance=int(row["amount"]), token_account=row["address"]))
            # a short page is the last one
            if len(rows) < self.page_limit:
                break
            cursor = res.get("cursor")
            page += 1
        info("holders_fetched", count=len(holders), pages=page)
        return holders
