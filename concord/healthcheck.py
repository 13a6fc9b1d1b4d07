"""Backend health checks: ping each backend before starting a debate."""

import asyncio
import logging

from concord.providers.base import Backend, ProviderError

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK."
_TIMEOUT_SEC = 15.0


async def _check_one(backend_id: str, backend: Backend, timeout_sec: float) -> tuple[str, bool, str]:
    """Ping a single backend. Returns (backend_id, ok, error_message)."""
    try:
        reply = await asyncio.wait_for(backend.call(_PING_PROMPT), timeout=timeout_sec)
    except TimeoutError:
        return backend_id, False, f"No reply within {timeout_sec:g}s"
    except ProviderError as exc:
        return backend_id, False, str(exc)
    except Exception as exc:
        logger.debug("Health check for %s raised", backend_id, exc_info=True)
        return backend_id, False, str(exc)
    if not reply.strip():
        return backend_id, False, "Empty reply"
    return backend_id, True, ""


async def run_health_checks(
    backends: dict[str, Backend],
    timeout_sec: float = _TIMEOUT_SEC,
) -> dict[str, tuple[bool, str]]:
    """Ping all backends in parallel. Backends sharing an identity are pinged once.

    Returns:
        Dict mapping backend id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    by_identity: dict[str, list[str]] = {}
    for backend_id, backend in backends.items():
        by_identity.setdefault(backend.identity(), []).append(backend_id)

    probes = [ids[0] for ids in by_identity.values()]
    results = await asyncio.gather(*(_check_one(b, backends[b], timeout_sec) for b in probes))
    outcome = {backend_id: (ok, err) for backend_id, ok, err in results}

    report: dict[str, tuple[bool, str]] = {}
    for ids in by_identity.values():
        for backend_id in ids:
            report[backend_id] = outcome[ids[0]]
            if not outcome[ids[0]][0]:
                logger.warning("Health check failed for %s: %s", backend_id, outcome[ids[0]][1])
    return report
