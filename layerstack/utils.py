# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

from typing import Optional, Union

import numpy as np

# Stabilizer of the epsilon rule used by the relevance propagation.
RELEVANCE_EPS: float = 0.01


def as_vector(values, dtype=np.float64) -> np.ndarray:
    """Return `values` as a new 1-D float array."""
    arr = np.array(values, dtype=dtype, copy=True)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-D array, got shape {arr.shape}.")
    return arr


def default_rng(seed: Optional[Union[int, np.random.Generator]] = None) -> np.random.Generator:
    """Return `seed` if it already is a Generator, else a new seeded one."""
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


def signed_stabilizer(y: np.ndarray, eps: float = RELEVANCE_EPS) -> np.ndarray:
    """
    Return y + eps * sign(y), treating sign(0) as +1.

    Used as the denominator of the epsilon-LRP rule so that it never hits zero.
    """
    sign = np.where(y >= 0.0, 1.0, -1.0)
    return y + eps * sign


def dropout_mask(
    size: int, dropout: float, rng: np.random.Generator
) -> np.ndarray:
    """
    Draw an inverted-dropout mask of the given size.

    Each element is a uniform draw rounded to {0, 1} with `dropout` as the
    threshold (draw < dropout -> 0) and then divided by the keep probability,
    so the mask holds values in {0, 1/p}.
    """
    p = 1.0 - dropout
    keep = (rng.uniform(0.0, 1.0, size=size) >= dropout).astype(np.float64)
    return keep / p
