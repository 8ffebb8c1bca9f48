# ============================================================
# publisher.py — Asset history events over RabbitMQ
# ------------------------------------------------------------
# Every booking action leaves an entry in the asset history.
# Entries are published on the fanout exchange; the inventory
# service consumes them and appends to its history table.
#
# Publishing is best-effort: a broker outage is logged and
# swallowed so it never blocks a booking operation.
# ============================================================
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

import pika

from asset_bookings import config

logger = logging.getLogger(__name__)

HISTORY_EVENT = "AssetHistoryRecorded"


class AuditEmitter(Protocol):
    def record(
        self,
        asset_id: str,
        action: str,
        holder_id: Optional[str],
        note: str,
        acting_user_id: Optional[str] = None,
    ) -> None: ...


# Publishes one message on the fanout exchange:
#
#   - event_type : event name
#   - payload    : message body
#
# Every consumer bound to the exchange receives it.
def publish_event(event_type: str, payload: dict, host: Optional[str] = None,
                  exchange: Optional[str] = None):
    exchange = exchange or config.AUDIT_EXCHANGE
    conn = pika.BlockingConnection(pika.ConnectionParameters(host=host or config.RABBITMQ_HOST))
    try:
        ch = conn.channel()
        # durable so the exchange survives a broker restart
        ch.exchange_declare(exchange=exchange, exchange_type="fanout", durable=True)
        message = {"type": event_type, "payload": payload}
        ch.basic_publish(exchange=exchange, routing_key="", body=json.dumps(message))
        logger.debug("published %s %s", event_type, payload)
    finally:
        conn.close()


class RabbitAuditEmitter:
    def __init__(self, host: Optional[str] = None, exchange: Optional[str] = None, publish=publish_event):
        self.host = host
        self.exchange = exchange
        self._publish = publish

    def record(self, asset_id, action, holder_id, note, acting_user_id=None):
        payload = {
            "assetId": asset_id,
            "action": action,
            "employeeId": holder_id,
            "note": note,
            "userId": acting_user_id,
            "recordedAt": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._publish(HISTORY_EVENT, payload, host=self.host, exchange=self.exchange)
        except Exception:
            logger.exception("could not record %s history for asset %s", action, asset_id)
