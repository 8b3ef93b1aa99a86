"""
Bech32 checksum encoding (BIP-173) for LNURL tokens

LNURLs routinely exceed the 90 character limit BIP-173 puts on segwit
addresses, so this implementation does not enforce it.
"""

from typing import List, Optional, Sequence, Tuple

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LEN = 6


def _polymod(values: Sequence[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for i, gen in enumerate(_GENERATOR):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: Sequence[int]) -> List[int]:
    polymod = _polymod(_hrp_expand(hrp) + list(data) + [0] * _CHECKSUM_LEN) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(_CHECKSUM_LEN)]


def convertbits(data: Sequence[int], frombits: int, tobits: int, pad: bool = True) -> Optional[List[int]]:
    """General power-of-2 base conversion. Returns None on invalid input."""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1
    for value in data:
        if value < 0 or (value >> frombits):
            return None
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None
    return ret


def bech32_encode(hrp: str, data: Sequence[int]) -> str:
    combined = list(data) + _create_checksum(hrp, data)
    return hrp + "1" + "".join(CHARSET[d] for d in combined)


def bech32_decode(bech: str) -> Tuple[Optional[str], Optional[List[int]]]:
    """
    Split and verify a lowercase bech32 string.

    Returns (hrp, data) without the checksum, or (None, None) when the string
    is malformed. Uppercase input is rejected outright.
    """
    if any(ord(c) < 33 or ord(c) > 126 for c in bech):
        return None, None
    if bech.lower() != bech:
        return None, None
    pos = bech.rfind("1")
    if pos < 1 or pos + _CHECKSUM_LEN + 1 > len(bech):
        return None, None
    hrp = bech[:pos]
    try:
        data = [_CHARSET_REV[c] for c in bech[pos + 1:]]
    except KeyError:
        return None, None
    if _polymod(_hrp_expand(hrp) + data) != 1:
        return None, None
    return hrp, data[:-_CHECKSUM_LEN]
