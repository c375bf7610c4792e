#!/usr/bin/env python3
# relay_send.py - fragment a raw transaction and relay it to a gateway over UDP:
# - hex or z85 payloads, configurable segment size
# - optional shuffle / duplication to exercise the gateway's reassembly
# - per-segment ARQ on the gateway's reply frames

import argparse
import logging
import os
import random
import sys
import threading
import uuid
from typing import Dict, Hashable, List, Optional, Tuple

from arq import ARQConfig, SelectiveARQ
from errors import RelayError
from fragment import ENCODINGS, MAX_PART, fragment_tx
from relay_common import make_segment_frame, parse_reply
from segment_store import Segment
from udp_driver import UDPConfig, UDPLink

logger = logging.getLogger("relay_send")


class ReplyBox:
    """Collects gateway replies from a background recv loop, keyed by (bundle_id, index)."""
    def __init__(self, link: UDPLink):
        self.link = link
        self._replies: Dict[Tuple[str, int], dict] = {}
        self._cv = threading.Condition()
        self._stop = threading.Event()
        self._thr: Optional[threading.Thread] = None

    def _run(self):
        while not self._stop.is_set():
            pkt = self.link.recv()
            if not pkt:
                continue
            rep = parse_reply(pkt)
            if rep is None or rep.get("i") is None:
                continue
            with self._cv:
                self._replies[(rep["i"], int(rep.get("c") or 0))] = rep
                self._cv.notify_all()

    def start(self):
        self._thr = threading.Thread(target=self._run, daemon=True)
        self._thr.start()

    def stop(self):
        self._stop.set()
        if self._thr:
            self._thr.join(timeout=1.0)

    def wait(self, key: Hashable, timeout_s: float) -> Optional[bool]:
        with self._cv:
            self._cv.wait_for(lambda: key in self._replies, timeout=timeout_s)
            rep = self._replies.pop(key, None)
        if rep is None:
            return None
        if not rep["ok"]:
            logger.warning("gateway refused segment %s-%d: %s", key[0], key[1], rep.get("error"))
        return bool(rep["ok"])


def order_segments(segs: List[Segment], shuffle: bool, dup: int, rng: random.Random) -> List[Segment]:
    out = list(segs)
    if dup > 1:
        out = [s for s in out for _ in range(dup)]
    if shuffle:
        rng.shuffle(out)
    return out


def read_raw_tx(arg: str) -> bytes:
    text = open(arg).read().strip() if os.path.exists(arg) else arg.strip()
    return bytes.fromhex(text)


def main(argv=None):
    ap = argparse.ArgumentParser(description="Relay a raw transaction to a gateway in segments")
    ap.add_argument("tx", help="raw transaction hex, or a file holding it")
    ap.add_argument("--peer_host", type=str, default="127.0.0.1")
    ap.add_argument("--peer_port", type=int, default=8091)
    ap.add_argument("--bind_host", type=str, default="0.0.0.0")
    ap.add_argument("--bind_port", type=int, default=0)
    ap.add_argument("--drop", type=float, default=0.0, help="simulate iid loss on send path")
    ap.add_argument("--jitter_ms", type=int, default=0, help="+/- jitter per send (ms)")
    ap.add_argument("--bundle_id", type=str, default=None)
    ap.add_argument("--encoding", choices=ENCODINGS, default="z85")
    ap.add_argument("--max_part", type=int, default=MAX_PART)
    ap.add_argument("--network", type=str, default=None, help="network hint, e.g. t for testnet")
    ap.add_argument("--shuffle", action="store_true")
    ap.add_argument("--dup", type=int, default=1)
    ap.add_argument("--max_retries", type=int, default=3)
    ap.add_argument("--ack_timeout_ms", type=int, default=2000)
    ap.add_argument("--log_level", type=str, default="WARNING")
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        raw = read_raw_tx(args.tx)
        segs = fragment_tx(args.bundle_id or str(uuid.uuid4()), raw, args.max_part,
                           args.encoding, args.network)
    except (ValueError, RelayError) as e:
        print(f"[TX] cannot fragment transaction: {e}")
        return 2

    link = UDPLink(UDPConfig(bind_host=args.bind_host, bind_port=args.bind_port,
                             peer_host=args.peer_host, peer_port=args.peer_port,
                             drop=args.drop, jitter_ms=args.jitter_ms))
    replies = ReplyBox(link)
    replies.start()
    arq = SelectiveARQ(ARQConfig(max_retries=args.max_retries, ack_timeout_ms=args.ack_timeout_ms))

    bundle_id = segs[0].bundle_id
    print(f"[TX] bundle {bundle_id}: {len(segs)} segment(s), txid {segs[0].txid}")

    failed = 0
    for seg in order_segments(segs, args.shuffle, args.dup, random.Random()):
        ok = arq.send_with_retries((seg.bundle_id, seg.index), make_segment_frame(seg),
                                   lambda _k, blob: link.send(blob), replies.wait)
        print(f"[TX] segment {seg.index}: {'OK' if ok else 'FAILED'}")
        failed += not ok

    replies.stop()
    link.close()
    print(f"[TX] done: {arq.sends} datagram(s) sent, {failed} failure(s)")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
