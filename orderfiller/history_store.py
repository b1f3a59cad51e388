"""Simple JSON-backed store of fill results.

Keeps every fill outcome per order hash so the CLI can report fill history.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import time
from typing import Any, Dict, List, Optional

from .executor import FillResult


class HistoryStore:
    def __init__(
        self,
        base_dir: Optional[str] = None,
        filename: str = "fill_history.json",
        logger: Optional[logging.Logger] = None,
    ):
        directory = base_dir or os.getenv("FILLER_STATE_DIR") or os.getcwd()
        self.path = os.path.join(directory, filename)
        self.logger = logger or logging.getLogger(__name__)
        self._data: Dict[str, Any] = {
            "orders": {},
            "last_saved_at": None,
        }
        self._load()

    def _load(self) -> None:
        try:
            if os.path.exists(self.path):
                with open(self.path, "r", encoding="utf-8") as f:
                    obj = json.load(f)
                if isinstance(obj, dict):
                    self._data.update(obj)
                    self.logger.debug(f"Fill history loaded: {len(self.orders)} orders")
        except (OSError, ValueError) as e:
            self.logger.warning(f"Could not load fill history from {self.path}: {e}")

    def _save(self) -> None:
        self._data["last_saved_at"] = time.time()

        # Keep a copy of the previous file before overwriting
        if os.path.exists(self.path):
            try:
                shutil.copy2(self.path, self.path + ".backup")
            except OSError as e:
                self.logger.debug(f"History backup skipped: {e}")

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)

    @property
    def orders(self) -> Dict[str, List[Dict[str, Any]]]:
        orders = self._data.get("orders")
        if not isinstance(orders, dict):
            orders = {}
            self._data["orders"] = orders
        return orders

    def record(self, result: FillResult) -> Dict[str, Any]:
        entry = {
            "status": result.status.value,
            "txHash": result.tx_hash,
            "blockNumber": result.block_number,
            "gasUsed": result.gas_used,
            "filledMakingAmount": str(result.filled_making_amount) if result.filled_making_amount is not None else None,
            "filledTakingAmount": str(result.filled_taking_amount) if result.filled_taking_amount is not None else None,
            "attempts": len(result.attempts),
            "error": result.error.to_dict() if result.error else None,
            "recordedAt": int(time.time()),
        }
        self.orders.setdefault(result.order_hash.lower(), []).append(entry)
        self._save()
        return entry

    def get(self, order_hash: str) -> List[Dict[str, Any]]:
        return list(self.orders.get(order_hash.lower(), []))

    def summary(self, order_hash: str) -> Dict[str, Any]:
        """Total filled amounts over the successful fills of one order."""
        fills = [e for e in self.get(order_hash) if e.get("status") == "filled"]
        total_making = 0
        total_taking = 0
        for entry in fills:
            try:
                total_making += int(entry.get("filledMakingAmount") or 0)
                total_taking += int(entry.get("filledTakingAmount") or 0)
            except (TypeError, ValueError):
                continue
        return {
            "orderHash": order_hash.lower(),
            "fillCount": len(fills),
            "totalFilledMaking": str(total_making),
            "totalFilledTaking": str(total_taking),
            "fills": fills,
        }
