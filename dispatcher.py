# dispatcher.py - randomized failover over the configured pushtx backends
import logging
import random
from typing import List, Optional, Protocol, Sequence

from errors import NoBackendAvailable, PushExhausted
from relay_common import normalize_network

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class PushBackend(Protocol):
    name: str
    network: Optional[str]   # "main" / "test", None = any

    def push_tx(self, raw_tx: str) -> bool: ...


class PushDispatcher:
    """
    Forwards a verified raw tx to one of several interchangeable backends.

    One candidate backend is called directly. With several, each attempt
    picks one uniformly at random (with replacement) for up to
    MAX_ATTEMPTS sequential attempts, stopping at the first success.
    """
    def __init__(self, backends: Sequence[PushBackend] = (),
                 max_attempts: int = MAX_ATTEMPTS, rng: Optional[random.Random] = None):
        self.backends: List[PushBackend] = list(backends)
        self.max_attempts = max_attempts
        self.rng = rng or random.Random()

    def register(self, backend: PushBackend) -> None:
        self.backends.append(backend)

    def candidates(self, network: Optional[str] = None) -> List[PushBackend]:
        want = normalize_network(network)
        return [b for b in self.backends if b.network is None or normalize_network(b.network) == want]

    def _attempt(self, backend: PushBackend, raw_tx: str) -> bool:
        try:
            return bool(backend.push_tx(raw_tx))
        except Exception:
            # backends must resolve failures to False; count a leak as a failed attempt
            logger.exception("pushtx backend %s raised", getattr(backend, "name", backend))
            return False

    def push(self, raw_tx: str, network: Optional[str] = None) -> bool:
        """
        Returns True once a backend accepted the tx.
        Raises NoBackendAvailable or PushExhausted otherwise.
        """
        pool = self.candidates(network)
        if not pool:
            logger.error("Failed to push a transaction. No pushtx service available for network %s",
                         normalize_network(network))
            raise NoBackendAvailable(f"no pushtx service for network {normalize_network(network)}")

        if len(pool) == 1:
            if self._attempt(pool[0], raw_tx):
                return True
            raise PushExhausted(1)

        success = False
        attempts = 0
        while not success and attempts < self.max_attempts:
            backend = self.rng.choice(pool)
            success = self._attempt(backend, raw_tx)
            attempts += 1

        if not success:
            logger.info("Failed to push a transaction after %d random attempts", attempts)
            raise PushExhausted(attempts)
        return True
