# arq.py
import random, time
from dataclasses import dataclass
from typing import Callable, Hashable, Optional

@dataclass
class ARQConfig:
    max_retries: int = 3
    base_rto_ms: int = 120     # base retransmission timeout
    jitter_ms: int = 40        # ± jitter
    ack_timeout_ms: int = 200  # wait for a reply before deciding to retry

class SelectiveARQ:
    """
    Per-segment ARQ. You provide two callbacks:
      send_once(key, payload: bytes) -> None
      got_ack(key, timeout_s: float) -> Optional[bool]
        None = no reply yet, True/False = the gateway's verdict
    A refusal (False) is final: resending the same segment won't change it.
    """
    def __init__(self, cfg: ARQConfig, rng: Optional[random.Random] = None):
        self.cfg = cfg
        self.rng = rng or random.Random(0xC0FFEE)
        self.sends = 0

    def _sleep_ms(self, ms: int):
        time.sleep(ms/1000.0)

    def send_with_retries(self, key: Hashable, payload: bytes,
                          send_once: Callable[[Hashable, bytes], None],
                          got_ack: Callable[[Hashable, float], Optional[bool]]) -> bool:
        wait_s = self.cfg.ack_timeout_ms / 1000.0
        # first attempt
        send_once(key, payload); self.sends += 1
        verdict = got_ack(key, wait_s)
        if verdict is not None: return verdict
        # bounded retries with jittered RTO
        for attempt in range(1, self.cfg.max_retries+1):
            rto = self.cfg.base_rto_ms + self.rng.randint(-self.cfg.jitter_ms, self.cfg.jitter_ms)
            self._sleep_ms(max(10, rto))
            send_once(key, payload); self.sends += 1
            verdict = got_ack(key, wait_s)
            if verdict is not None: return verdict
        return False
