from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .peers import PeerRegistry
from .proto import short_id

log = logging.getLogger("orion_relay.fanout")


def broadcast(registry: PeerRegistry, exclude_id: Optional[str], frame: Dict[str, Any]) -> int:
    """Send ``frame`` to every active peer except ``exclude_id``.

    Iterates over a snapshot of the registry so a peer dropping out mid
    fan-out does not disturb the rest. Returns the number of peers handed
    the frame.
    """
    sent = 0
    for peer_id, _key in registry.list_active():
        if peer_id == exclude_id:
            continue
        rec = registry.get(peer_id)
        if rec is None:
            continue
        try:
            rec.connection.send(frame)
        except Exception:
            log.exception("broadcast to %s failed", short_id(peer_id))
            continue
        sent += 1
    return sent


__all__ = ["broadcast"]
