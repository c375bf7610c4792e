#!/usr/bin/env python3
# relay_recv.py - Gateway receiver:
# - segments arrive as JSON datagrams (fields i/c/s/h/n/t, see relay_common.py)
# - each datagram is processed on a worker thread so pushes never stall recv
# - every datagram is answered with a reply frame {"i","c","ok"[,"error"]}
# - --once flag to exit after the first bundle-completing segment
# - Clean Ctrl-C handling

import argparse
import logging
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

from errors import ConfigError, RelayError
from gateway import Gateway
from gateway_config import GatewayConfig, build_gateway, load_config
from relay_common import make_reply, parse_segment_frame
from segment_store import Segment
from udp_driver import Addr, UDPConfig, UDPLink

logger = logging.getLogger("relay_recv")


def handle_datagram(gw: Gateway, link: UDPLink, pkt: bytes, addr: Addr) -> Tuple[Optional[Segment], bool]:
    """Process one datagram and answer the sender. Returns (segment or None, outcome)."""
    try:
        seg = parse_segment_frame(pkt)
    except RelayError as e:
        logger.warning("Rejected datagram from %s:%d: %s", addr[0], addr[1], e)
        link.send_to(make_reply(None, None, False, str(e)), addr)
        return None, False

    try:
        ok = gw.process_segment(seg)
    except RelayError as e:
        link.send_to(make_reply(seg.bundle_id, seg.index, False, str(e)), addr)
        return seg, False

    err = None if ok else "A problem was met while trying to process the segment"
    link.send_to(make_reply(seg.bundle_id, seg.index, ok, err), addr)
    return seg, ok


def main(argv=None):
    ap = argparse.ArgumentParser(description="Segment relay gateway (UDP)")
    ap.add_argument("--config", type=str, default=None, help="gateway config JSON")
    ap.add_argument("--bind_host", type=str, default=None)
    ap.add_argument("--bind_port", type=int, default=None)
    ap.add_argument("--workers", type=int, default=None)
    ap.add_argument("--drop", type=float, default=0.0, help="simulate iid loss on the reply path")
    ap.add_argument("--once", action="store_true", help="exit after the first completed bundle")
    ap.add_argument("--log_level", type=str, default="INFO")
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        cfg = load_config(args.config) if args.config else GatewayConfig()
        gw = build_gateway(cfg)
    except ConfigError as e:
        print(f"[RX] config error: {e}")
        return 2

    bind_host = args.bind_host or cfg.bind_host
    bind_port = args.bind_port if args.bind_port is not None else cfg.bind_port
    workers = args.workers or cfg.workers

    link = UDPLink(UDPConfig(bind_host=bind_host, bind_port=bind_port, drop=args.drop))

    # graceful Ctrl-C
    stop = threading.Event()

    def _sigint(*_):
        stop.set()

    signal.signal(signal.SIGINT, _sigint)

    def _work(pkt, addr):
        try:
            seg, _ = handle_datagram(gw, link, pkt, addr)
        except Exception:
            logger.exception("Unexpected failure while handling a datagram from %s:%d", *addr)
            return
        if args.once and seg is not None and gw.storage.has_processed_tx(seg.bundle_id):
            stop.set()

    print(f"RX ready on {bind_host}:{link.local_addr[1]}.")
    with ThreadPoolExecutor(max_workers=workers) as pool:
        while not stop.is_set():
            got = link.recv_from()
            if got is None:
                continue
            pkt, addr = got
            pool.submit(_work, pkt, addr)

    link.close()
    print("[RX] Stopped cleanly.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
