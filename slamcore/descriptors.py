"""Binary ORB descriptor utilities."""

from __future__ import annotations

import numpy as np

DESCRIPTOR_BYTES = 32


def descriptor_distance(a, b) -> int:
    """Return the Hamming distance between two binary descriptors."""
    first = np.asarray(a, dtype=np.uint8).ravel()
    second = np.asarray(b, dtype=np.uint8).ravel()
    if first.shape != second.shape:
        raise ValueError(
            f"descriptor sizes differ: {first.size} and {second.size} bytes"
        )
    return int(np.unpackbits(np.bitwise_xor(first, second)).sum())