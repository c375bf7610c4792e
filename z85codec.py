# z85codec.py - Z85 text encoding for text-only channels (rfc.zeromq.org/spec:32),
# extended to inputs whose length is not a multiple of 4:
#   encode: zero-pad the last group, drop `pad` trailing digits
#   decode: right-pad with the last alphabet char, drop `pad` trailing bytes
import re

from errors import DecodeError

ALPHABET = (
    "0123456789"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    ".-:+=^!/*?&<>()[]{}@%$#"
)
assert len(ALPHABET) == 85

_DECODER = {ch: i for i, ch in enumerate(ALPHABET)}

_RE_Z85 = re.compile(r"[0-9A-Za-z.\-:+=^!/*?&<>()\[\]{}@%$#]+")
_RE_HEX = re.compile(r"[0-9A-Fa-f]+")

# 85 ** 4
_DIV0 = 52200625


def encode(data: bytes) -> str:
    pad = (4 - len(data) % 4) % 4
    buf = bytes(data) + b"\x00" * pad
    out = []
    for off in range(0, len(buf), 4):
        value = int.from_bytes(buf[off:off + 4], "big")
        last = off + 4 == len(buf)
        ndigits = 5 - pad if last else 5
        div = _DIV0
        for _ in range(ndigits):
            out.append(ALPHABET[(value // div) % 85])
            div //= 85
    return "".join(out)


def decode(text: str) -> bytes:
    """
    Decode Z85 text back to bytes.
    Raises DecodeError on characters outside the alphabet or on a
    5-digit group whose value does not fit in 32 bits.
    """
    rem = len(text) % 5
    pad = 0 if rem == 0 else 5 - rem
    text = text + ALPHABET[-1] * pad

    out = bytearray()
    for off in range(0, len(text), 5):
        value = 0
        for ch in text[off:off + 5]:
            digit = _DECODER.get(ch)
            if digit is None:
                raise DecodeError(f"invalid z85 character {ch!r} at offset {off}")
            value = value * 85 + digit
        if value > 0xFFFFFFFF:
            raise DecodeError(f"z85 group at offset {off} overflows 32 bits")
        out += value.to_bytes(4, "big")

    if pad:
        del out[-pad:]
    return bytes(out)


def is_hex(s: str) -> bool:
    return bool(_RE_HEX.fullmatch(s))


def is_z85(s: str) -> bool:
    # hex digits are a subset of the alphabet; a pure-hex string is never z85
    return bool(_RE_Z85.fullmatch(s)) and not is_hex(s)


def hex_to_bytes(s: str) -> bytes:
    if not is_hex(s) or len(s) % 2:
        raise DecodeError("malformed hexadecimal string")
    return bytes.fromhex(s)


def text_to_bytes(s: str) -> bytes:
    """Decode a field that may carry either z85 or plain hex."""
    return decode(s) if is_z85(s) else hex_to_bytes(s)
