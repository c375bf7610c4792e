# fragment.py
from typing import List, Optional

import z85codec
from rawtx import txid_of
from segment_store import Segment

MAX_PART = 120  # characters of payload per segment (tunable; link-specific)

ENCODINGS = ("hex", "z85")


def split_text(text: str, max_part: int = MAX_PART) -> List[str]:
    assert max_part > 0
    total = (len(text) + max_part - 1) // max_part or 1
    return [text[i*max_part:(i+1)*max_part] for i in range(total)]


def fragment_tx(bundle_id: str, raw_tx: bytes, max_part: int = MAX_PART,
                encoding: str = "hex", network: Optional[str] = None) -> List[Segment]:
    """
    Cut a serialized transaction into numbered segments. Segment 0 carries
    the segment count, the txid (same encoding as the payload) and the
    optional network hint.
    """
    if encoding not in ENCODINGS:
        raise ValueError(f"unknown encoding: {encoding}")
    txid = txid_of(raw_tx)
    if encoding == "z85":
        text = z85codec.encode(raw_tx)
        h = z85codec.encode(bytes.fromhex(txid))
    else:
        text, h = raw_tx.hex(), txid

    chunks = split_text(text, max_part)
    segs = []
    for i, chunk in enumerate(chunks):
        if i == 0:
            segs.append(Segment(bundle_id, 0, chunk, total=len(chunks), txid=h, network=network))
        else:
            segs.append(Segment(bundle_id, i, chunk))
    return segs
