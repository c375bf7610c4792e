# rawtx.py - minimal bitcoin transaction parser (legacy + segwit) and txid
import struct
from dataclasses import dataclass, field
from typing import List

from cryptography.hazmat.primitives import hashes

from errors import DecodeError


@dataclass
class TxIn:
    prev_hash: bytes   # internal byte order
    prev_index: int
    script_sig: bytes
    sequence: int
    witness: List[bytes] = field(default_factory=list)


@dataclass
class TxOut:
    value: int         # satoshis
    script_pubkey: bytes


@dataclass
class Transaction:
    version: int
    inputs: List[TxIn]
    outputs: List[TxOut]
    locktime: int
    segwit: bool = False

    def serialize_legacy(self) -> bytes:
        # witness-free serialization, the txid preimage
        out = [struct.pack("<i", self.version), _pack_varint(len(self.inputs))]
        for i in self.inputs:
            out.append(i.prev_hash + struct.pack("<I", i.prev_index))
            out.append(_pack_varint(len(i.script_sig)) + i.script_sig)
            out.append(struct.pack("<I", i.sequence))
        out.append(_pack_varint(len(self.outputs)))
        for o in self.outputs:
            out.append(struct.pack("<q", o.value))
            out.append(_pack_varint(len(o.script_pubkey)) + o.script_pubkey)
        out.append(struct.pack("<I", self.locktime))
        return b"".join(out)

    def txid(self) -> str:
        return double_sha256(self.serialize_legacy())[::-1].hex()


def double_sha256(data: bytes) -> bytes:
    h = hashes.Hash(hashes.SHA256())
    h.update(data)
    first = h.finalize()
    h = hashes.Hash(hashes.SHA256())
    h.update(first)
    return h.finalize()


def _pack_varint(n: int) -> bytes:
    if n < 0xFD:
        return struct.pack("<B", n)
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


class _Reader:
    def __init__(self, buf: bytes):
        self.buf = buf
        self.pos = 0

    def take(self, n: int) -> bytes:
        if n < 0 or self.pos + n > len(self.buf):
            raise DecodeError(f"truncated transaction at byte {self.pos}")
        b = self.buf[self.pos:self.pos + n]
        self.pos += n
        return b

    def unpack(self, fmt: str):
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))[0]

    def varint(self) -> int:
        first = self.unpack("<B")
        if first == 0xFD: return self.unpack("<H")
        if first == 0xFE: return self.unpack("<I")
        if first == 0xFF: return self.unpack("<Q")
        return first

    def var_bytes(self) -> bytes:
        return self.take(self.varint())

    def peek(self, n: int) -> bytes:
        return self.buf[self.pos:self.pos + n]

    def done(self) -> bool:
        return self.pos == len(self.buf)


def parse_tx(raw: bytes) -> Transaction:
    """
    Parse a serialized transaction. Segwit is detected from the
    marker/flag pair (0x00 0x01) following the version.
    Raises DecodeError on truncated input or trailing bytes.
    """
    r = _Reader(raw)
    version = r.unpack("<i")

    segwit = False
    if r.peek(2) == b"\x00\x01":
        r.take(2)
        segwit = True

    inputs = []
    for _ in range(r.varint()):
        prev_hash = r.take(32)
        prev_index = r.unpack("<I")
        script_sig = r.var_bytes()
        sequence = r.unpack("<I")
        inputs.append(TxIn(prev_hash, prev_index, script_sig, sequence))
    if not inputs:
        raise DecodeError("transaction has no inputs")

    outputs = []
    for _ in range(r.varint()):
        value = r.unpack("<q")
        outputs.append(TxOut(value, r.var_bytes()))

    if segwit:
        for txin in inputs:
            txin.witness = [r.var_bytes() for _ in range(r.varint())]

    locktime = r.unpack("<I")
    if not r.done():
        raise DecodeError(f"{len(raw) - r.pos} trailing byte(s) after transaction")
    return Transaction(version, inputs, outputs, locktime, segwit)


def txid_of(raw: bytes) -> str:
    return parse_tx(raw).txid()
