"""
Vectorised SHA-256 for the fixed 24-byte coordinate message.

The message always fits one 64-byte block, so the padded block is known
up front:

  W0..W1   key      (uint64 LE bytes, read as big-endian words)
  W2..W3   x        (int64 LE two's complement)
  W4..W5   y
  W6       0x80000000   padding bit
  W7..W14  0
  W15      192          message length in bits

Each compression step is applied to whole uint32 arrays, one lane per
coordinate.  numpy wraps uint32 arithmetic modulo 2^32, which is exactly
what SHA-256 needs.
"""

from typing import List, Tuple

import numpy as np

SHA256_K: Tuple[int, ...] = (
    0x428a2f98, 0x71374491, 0xb5c0fbcf, 0xe9b5dba5,
    0x3956c25b, 0x59f111f1, 0x923f82a4, 0xab1c5ed5,
    0xd807aa98, 0x12835b01, 0x243185be, 0x550c7dc3,
    0x72be5d74, 0x80deb1fe, 0x9bdc06a7, 0xc19bf174,
    0xe49b69c1, 0xefbe4786, 0x0fc19dc6, 0x240ca1cc,
    0x2de92c6f, 0x4a7484aa, 0x5cb0a9dc, 0x76f988da,
    0x983e5152, 0xa831c66d, 0xb00327c8, 0xbf597fc7,
    0xc6e00bf3, 0xd5a79147, 0x06ca6351, 0x14292967,
    0x27b70a85, 0x2e1b2138, 0x4d2c6dfc, 0x53380d13,
    0x650a7354, 0x766a0abb, 0x81c2c92e, 0x92722c85,
    0xa2bfe8a1, 0xa81a664b, 0xc24b8b70, 0xc76c51a3,
    0xd192e819, 0xd6990624, 0xf40e3585, 0x106aa070,
    0x19a4c116, 0x1e376c08, 0x2748774c, 0x34b0bcb5,
    0x391c0cb3, 0x4ed8aa4a, 0x5b9cca4f, 0x682e6ff3,
    0x748f82ee, 0x78a5636f, 0x84c87814, 0x8cc70208,
    0x90befffa, 0xa4506ceb, 0xbef9a3f7, 0xc67178f2,
)

SHA256_IV: Tuple[int, ...] = (
    0x6a09e667, 0xbb67ae85, 0x3c6ef372, 0xa54ff53a,
    0x510e527f, 0x9b05688c, 0x1f83d9ab, 0x5be0cd19,
)

PADDING_WORD = 0x80000000
MESSAGE_BITS = 24 * 8

_K = np.array(SHA256_K, dtype=np.uint32)
_IV = np.array(SHA256_IV, dtype=np.uint32)

_U32_LOW = np.uint64(0xFFFFFFFF)
_SHIFT32 = np.uint64(32)
_B0 = np.uint32(0x000000FF)
_B1 = np.uint32(0x0000FF00)
_8 = np.uint32(8)
_24 = np.uint32(24)


def bswap32_int(v: int) -> int:
    """Byte-swap a Python int in [0, 2^32)."""
    return int.from_bytes(v.to_bytes(4, "little"), "big")


def _bswap32(v: np.ndarray) -> np.ndarray:
    return ((v & _B0) << _24) | ((v & _B1) << _8) | ((v >> _8) & _B1) | (v >> _24)


def _rotr(v: np.ndarray, n: int) -> np.ndarray:
    return (v >> np.uint32(n)) | (v << np.uint32(32 - n))


def _split64(u: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """uint64 -> (low uint32, high uint32)."""
    return ((u & _U32_LOW).astype(np.uint32),
            (u >> _SHIFT32).astype(np.uint32))


def message_block(xs: np.ndarray, ys: np.ndarray, key: int) -> List[np.ndarray]:
    """The 16 big-endian message words of the padded block, per lane."""
    n = len(xs)
    ux = np.ascontiguousarray(xs, dtype=np.int64).view(np.uint64)
    uy = np.ascontiguousarray(ys, dtype=np.int64).view(np.uint64)
    x_lo, x_hi = _split64(ux)
    y_lo, y_hi = _split64(uy)

    zero = np.zeros(n, dtype=np.uint32)
    words = [
        np.full(n, bswap32_int(key & 0xFFFFFFFF), dtype=np.uint32),
        np.full(n, bswap32_int(key >> 32), dtype=np.uint32),
        _bswap32(x_lo), _bswap32(x_hi),
        _bswap32(y_lo), _bswap32(y_hi),
        np.full(n, PADDING_WORD, dtype=np.uint32),
    ]
    words.extend([zero] * 8)
    words.append(np.full(n, MESSAGE_BITS, dtype=np.uint32))
    return words


def sha256_coordinate_words(xs: np.ndarray, ys: np.ndarray,
                            key: int) -> np.ndarray:
    """SHA-256 of every (key, x, y) message.

    Args:
        xs: int64 array of x coordinates.
        ys: int64 array of y coordinates, same length.
        key: Hash key in [0, 2^64).

    Returns:
        (n, 8) uint32 array; row i is the digest of lane i as eight
        big-endian words.
    """
    n = len(xs)
    if len(ys) != n:
        raise ValueError(f"xs/ys length mismatch: {n} vs {len(ys)}")

    w = message_block(xs, ys, key)
    for t in range(16, 64):
        w15, w2 = w[t - 15], w[t - 2]
        s0 = _rotr(w15, 7) ^ _rotr(w15, 18) ^ (w15 >> np.uint32(3))
        s1 = _rotr(w2, 17) ^ _rotr(w2, 19) ^ (w2 >> np.uint32(10))
        w.append(w[t - 16] + s0 + w[t - 7] + s1)

    a, b, c, d, e, f, g, h = (np.full(n, iv, dtype=np.uint32) for iv in _IV)
    for t in range(64):
        s1 = _rotr(e, 6) ^ _rotr(e, 11) ^ _rotr(e, 25)
        ch = (e & f) ^ (~e & g)
        temp1 = h + s1 + ch + _K[t] + w[t]
        s0 = _rotr(a, 2) ^ _rotr(a, 13) ^ _rotr(a, 22)
        maj = (a & b) ^ (a & c) ^ (b & c)
        temp2 = s0 + maj
        h, g, f = g, f, e
        e = d + temp1
        d, c, b = c, b, a
        a = temp1 + temp2

    out = np.empty((n, 8), dtype=np.uint32)
    for i, v in enumerate((a, b, c, d, e, f, g, h)):
        out[:, i] = v + _IV[i]
    return out


def low64_from_words(words: np.ndarray) -> np.ndarray:
    """Last 8 digest bytes as big-endian uint64, per row."""
    return ((words[:, 6].astype(np.uint64) << _SHIFT32)
            | words[:, 7].astype(np.uint64))


def rare_mask(words: np.ndarray, rarity: int) -> np.ndarray:
    return (low64_from_words(words) % np.uint64(rarity)) == 0
