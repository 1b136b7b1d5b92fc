# Author: Bradley R. Kinnard — fire and forget, but write it down

"""
Structured telemetry events (cache hits, breaker trips, fallbacks served).
Goes through structlog so it lands in the same JSON stream as everything else.
Must never block or raise into the pipeline.
"""

import logging

import structlog

log = logging.getLogger(__name__)

_events = structlog.get_logger("codeguard.telemetry")


def emit(event: str, **fields) -> None:
    """One structured event. Swallows everything, telemetry is not worth a failed request."""
    try:
        _events.info(event, **fields)
    except Exception as e:
        log.debug(f"telemetry emit failed for {event}: {e}")
