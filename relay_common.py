# relay_common.py - segment field contract and JSON datagram frames
#
# Segment fields (short keys keep frames small on constrained links):
#   i  bundle id            (required)
#   c  segment index        (optional, default 0)
#   s  number of segments   (required iff c == 0)
#   h  expected txid        (required iff c == 0; hex or z85)
#   n  network hint         (optional, c == 0 only)
#   t  payload chunk        (required; hex or z85)
import json
from typing import Any, Dict, Optional

from errors import DecodeError, MissingField
from segment_store import Segment

MAIN = "main"
TEST = "test"

_NETWORKS = {
    None: MAIN, "": MAIN, "m": MAIN, "main": MAIN, "mainnet": MAIN, "bitcoin": MAIN,
    "t": TEST, "test": TEST, "testnet": TEST, "testnet3": TEST,
}


def normalize_network(n: Optional[str]) -> str:
    # unknown names (e.g. "signet") pass through lowercased
    key = n.lower() if isinstance(n, str) else n
    return _NETWORKS.get(key, key)


def _to_int(v: Any, name: str) -> int:
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Parameter {name} is not an integer: {v!r}") from e


def parse_segment(obj: Dict[str, Any]) -> Segment:
    """
    Build a Segment from its field dict.
    Raises MissingField when a required field is absent or empty.
    """
    if not obj.get("i"):
        raise MissingField("i")
    idx = _to_int(obj["c"], "c") if obj.get("c") else 0
    if idx < 0:
        raise DecodeError(f"Parameter c must be non-negative: {idx}")

    total = txid = network = None
    if idx == 0:
        if not obj.get("s"):
            raise MissingField("s")
        total = _to_int(obj["s"], "s")
        if total <= 0:
            raise DecodeError(f"Parameter s must be positive: {total}")
        if not obj.get("h"):
            raise MissingField("h")
        txid = str(obj["h"])
        if obj.get("n"):
            network = str(obj["n"])

    if not obj.get("t"):
        raise MissingField("t")

    return Segment(bundle_id=str(obj["i"]), index=idx, payload=str(obj["t"]),
                   total=total, txid=txid, network=network)


def segment_to_dict(seg: Segment) -> Dict[str, Any]:
    d: Dict[str, Any] = {"i": seg.bundle_id, "c": seg.index, "t": seg.payload}
    if seg.index == 0:
        d["s"] = seg.total
        d["h"] = seg.txid
        if seg.network:
            d["n"] = seg.network
    return d


# --- Datagram frames ---
def make_segment_frame(seg: Segment) -> bytes:
    return json.dumps(segment_to_dict(seg), separators=(",", ":")).encode()


def parse_segment_frame(pkt: bytes) -> Segment:
    try:
        obj = json.loads(pkt.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"malformed segment frame: {e}") from e
    if not isinstance(obj, dict):
        raise DecodeError("segment frame is not a JSON object")
    return parse_segment(obj)


def make_reply(bundle_id: Optional[str], index: Optional[int], ok: bool, error: Optional[str] = None) -> bytes:
    d: Dict[str, Any] = {"i": bundle_id, "c": index, "ok": ok}
    if error:
        d["error"] = error
    return json.dumps(d, separators=(",", ":")).encode()


def parse_reply(pkt: bytes) -> Optional[Dict[str, Any]]:
    try:
        obj = json.loads(pkt.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(obj, dict) or "ok" not in obj:
        return None
    return obj
