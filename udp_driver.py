# udp_driver.py
import socket, time, random
from dataclasses import dataclass
from typing import Optional, Tuple

Addr = Tuple[str, int]

@dataclass
class UDPConfig:
    bind_host: str = "0.0.0.0"
    bind_port: int = 8091
    peer_host: str = "127.0.0.1"
    peer_port: int = 8092
    drop: float = 0.0    # iid drop probability on send
    jitter_ms: int = 0   # +/- jitter per send in ms
    max_len: int = 4096
    recv_timeout_s: float = 0.2

class UDPLink:
    def __init__(self, cfg: UDPConfig):
        self.cfg = cfg
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((cfg.bind_host, cfg.bind_port))
        self.sock.settimeout(cfg.recv_timeout_s)
        self._rng = random.Random(0xD15EA5E)

    @property
    def local_addr(self) -> Addr:
        return self.sock.getsockname()

    def _impair(self) -> bool:
        # True = drop this datagram
        if self.cfg.drop and self._rng.random() < self.cfg.drop:
            return True
        if self.cfg.jitter_ms:
            time.sleep(max(0, self._rng.randint(-self.cfg.jitter_ms, self.cfg.jitter_ms)) / 1000.0)
        return False

    def send(self, blob: bytes):
        self.send_to(blob, (self.cfg.peer_host, self.cfg.peer_port))

    def send_to(self, blob: bytes, addr: Addr):
        if self._impair():
            return
        self.sock.sendto(blob, addr)

    def recv_from(self) -> Optional[Tuple[bytes, Addr]]:
        try:
            return self.sock.recvfrom(self.cfg.max_len)
        except socket.timeout:
            return None

    def recv(self) -> Optional[bytes]:
        got = self.recv_from()
        return got[0] if got else None

    def close(self):
        self.sock.close()
