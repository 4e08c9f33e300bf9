"""
Structured JSON event logger for order lifecycle observability.

Emits one JSON object per line to stderr. Events are designed to be
parsed by log aggregators (Grafana Loki, CloudWatch, ELK).

Optional webhook: when configured, alert-level events (order_rejected,
error) are POSTed to the URL.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.request
from datetime import datetime, timezone
from typing import Any

from ledger_core.contracts import Order, OrderStatus

logger = logging.getLogger("ledger.events")


def _order_fields(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "user_id": order.user_id,
        "instrument_id": order.instrument_id,
        "side": order.side.value,
        "type": order.order_type.value,
        "size": order.size,
        "price": order.price,
        "status": order.status.value,
    }


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook."""

    _ALERT_EVENTS = frozenset({"order_rejected", "error"})

    def __init__(
        self,
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
    ) -> None:
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            **fields,
        }
        if self._enabled:
            self._stream.write(json.dumps(record) + "\n")
            self._stream.flush()

        if self._webhook_url and event_type in self._ALERT_EVENTS:
            self._post_webhook(record)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=5)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def order_event(self, order: Order) -> dict:
        """Pick the event name from the order's status."""
        if order.side.is_cash:
            return self.cash_transfer(order)
        status = order.status
        if status is OrderStatus.NEW:
            return self._emit("order_created", **_order_fields(order))
        if status is OrderStatus.FILLED:
            return self._emit("order_filled", **_order_fields(order))
        if status is OrderStatus.REJECTED:
            return self.order_rejected(order)
        if status is OrderStatus.CANCELLED:
            return self._emit("order_cancelled", **_order_fields(order))
        raise ValueError(f"Unknown order status: {status!r}")

    def order_rejected(self, order: Order, reason: str = "") -> dict:
        return self._emit("order_rejected", reason=reason, **_order_fields(order))

    def cash_transfer(self, order: Order) -> dict:
        return self._emit(
            "cash_transfer",
            order_id=order.id,
            user_id=order.user_id,
            side=order.side.value,
            amount=order.size,
            status=order.status.value,
        )

    def batch_processed(self, processed: int, filled: int, rejected: int) -> dict:
        return self._emit(
            "batch_processed",
            processed=processed,
            filled=filled,
            rejected=rejected,
        )

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)
