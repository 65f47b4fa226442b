"""
Accelerator backend: one CUDA kernel launch per batch via CuPy RawKernel.

Every thread hashes one coordinate with the same padded-block SHA-256 as
sha256.py and applies the same low-64-bit rarity test, so results are
bit-identical to the CPU backend.  The round constants are rendered into
the kernel source from sha256.SHA256_K / SHA256_IV.

Device discovery beyond "is CuPy importable and is there a device with
this id" belongs to the caller.
"""

from typing import Tuple

import numpy as np

from ..errors import BackendUnavailable
from .common import Miner
from .sha256 import MESSAGE_BITS, PADDING_WORD, SHA256_IV, SHA256_K

KERNEL_NAME = "sha256_coordinates"

_KERNEL_TEMPLATE = r"""
#define ROTR(v, n) (((v) >> (n)) | ((v) << (32 - (n))))

__constant__ unsigned int K256[64] = { @K256@ };
__constant__ unsigned int IV256[8] = { @IV256@ };

__device__ __forceinline__ unsigned int bswap32(unsigned int v) {
    return ((v & 0x000000ffu) << 24) | ((v & 0x0000ff00u) << 8) |
           ((v >> 8) & 0x0000ff00u) | (v >> 24);
}

extern "C" __global__
void sha256_coordinates(const long long* xs, const long long* ys,
                        const unsigned long long key,
                        const unsigned long long rarity,
                        unsigned int* digests, unsigned char* is_rare,
                        const int n)
{
    const int i = blockDim.x * blockIdx.x + threadIdx.x;
    if (i >= n) return;

    const unsigned long long ux = (unsigned long long)xs[i];
    const unsigned long long uy = (unsigned long long)ys[i];

    unsigned int w[64];
    w[0] = bswap32((unsigned int)(key & 0xffffffffULL));
    w[1] = bswap32((unsigned int)(key >> 32));
    w[2] = bswap32((unsigned int)(ux & 0xffffffffULL));
    w[3] = bswap32((unsigned int)(ux >> 32));
    w[4] = bswap32((unsigned int)(uy & 0xffffffffULL));
    w[5] = bswap32((unsigned int)(uy >> 32));
    w[6] = @PADDING@u;
    #pragma unroll
    for (int t = 7; t < 15; ++t) w[t] = 0u;
    w[15] = @BITS@u;

    #pragma unroll
    for (int t = 16; t < 64; ++t) {
        const unsigned int s0 = ROTR(w[t-15], 7) ^ ROTR(w[t-15], 18) ^ (w[t-15] >> 3);
        const unsigned int s1 = ROTR(w[t-2], 17) ^ ROTR(w[t-2], 19) ^ (w[t-2] >> 10);
        w[t] = w[t-16] + s0 + w[t-7] + s1;
    }

    unsigned int a = IV256[0], b = IV256[1], c = IV256[2], d = IV256[3];
    unsigned int e = IV256[4], f = IV256[5], g = IV256[6], h = IV256[7];

    #pragma unroll
    for (int t = 0; t < 64; ++t) {
        const unsigned int S1 = ROTR(e, 6) ^ ROTR(e, 11) ^ ROTR(e, 25);
        const unsigned int ch = (e & f) ^ (~e & g);
        const unsigned int temp1 = h + S1 + ch + K256[t] + w[t];
        const unsigned int S0 = ROTR(a, 2) ^ ROTR(a, 13) ^ ROTR(a, 22);
        const unsigned int maj = (a & b) ^ (a & c) ^ (b & c);
        const unsigned int temp2 = S0 + maj;
        h = g; g = f; f = e;
        e = d + temp1;
        d = c; c = b; b = a;
        a = temp1 + temp2;
    }

    unsigned int out[8];
    out[0] = a + IV256[0]; out[1] = b + IV256[1];
    out[2] = c + IV256[2]; out[3] = d + IV256[3];
    out[4] = e + IV256[4]; out[5] = f + IV256[5];
    out[6] = g + IV256[6]; out[7] = h + IV256[7];

    unsigned int* dst = digests + (size_t)i * 8;
    #pragma unroll
    for (int j = 0; j < 8; ++j) dst[j] = out[j];

    const unsigned long long low =
        ((unsigned long long)out[6] << 32) | (unsigned long long)out[7];
    is_rare[i] = (low % rarity == 0ULL) ? 1 : 0;
}
"""


def _hex_list(values) -> str:
    return ", ".join(f"0x{v:08x}u" for v in values)


KERNEL_SOURCE = (
    _KERNEL_TEMPLATE
    .replace("@K256@", _hex_list(SHA256_K))
    .replace("@IV256@", _hex_list(SHA256_IV))
    .replace("@PADDING@", f"0x{PADDING_WORD:08x}")
    .replace("@BITS@", str(MESSAGE_BITS))
)

MAX_BATCH = (1 << 31) - 1


class CudaMiner(Miner):
    """CUDA miner using a CuPy RawKernel.

    Raises BackendUnavailable at construction if CuPy is missing, no
    device with ``device_id`` exists, or the kernel fails to compile.
    """

    name = "accelerator"

    def __init__(self, device_id: int = 0, threads_per_block: int = 256):
        self.device_id = int(device_id)
        self.threads_per_block = int(threads_per_block)
        self._cp = None
        self._kernel = None
        self._init()

    def _init(self):
        try:
            import cupy as cp
        except ImportError as e:
            raise BackendUnavailable(
                f"CuPy is not installed: {e}", backend=self.name) from e

        try:
            n_devices = cp.cuda.runtime.getDeviceCount()
        except Exception as e:
            raise BackendUnavailable(
                f"CUDA runtime unavailable: {e}", backend=self.name) from e
        if not 0 <= self.device_id < n_devices:
            raise BackendUnavailable(
                f"device {self.device_id} not present "
                f"({n_devices} device(s) visible)",
                backend=self.name,
            )

        self._cp = cp
        self.device = cp.cuda.Device(self.device_id)
        try:
            with self.device:
                self._kernel = cp.RawKernel(KERNEL_SOURCE, KERNEL_NAME)
                self._kernel.compile()
        except Exception as e:
            raise BackendUnavailable(
                f"kernel compilation failed: {e}", backend=self.name) from e

    def hash_arrays(self, xs: np.ndarray, ys: np.ndarray, rarity: int,
                    key: int) -> Tuple[np.ndarray, np.ndarray]:
        cp = self._cp
        n = len(xs)
        if n > MAX_BATCH:
            raise ValueError(f"batch of {n} exceeds kernel limit {MAX_BATCH}")

        with self.device:
            xs_d = cp.asarray(xs, dtype=cp.int64)
            ys_d = cp.asarray(ys, dtype=cp.int64)
            digests_d = cp.zeros(n * 8, dtype=cp.uint32)
            rare_d = cp.zeros(n, dtype=cp.uint8)

            tpb = self.threads_per_block
            blocks = (n + tpb - 1) // tpb
            self._kernel(
                (blocks,), (tpb,),
                (xs_d, ys_d, cp.uint64(key), cp.uint64(rarity),
                 digests_d, rare_d, cp.int32(n)),
            )
            words = digests_d.get().reshape(n, 8)
            rare = rare_d.get().astype(bool)
        return words, rare

    def describe(self) -> str:
        return f"accelerator(cuda:{self.device_id})"
