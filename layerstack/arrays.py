# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Input encodings and the augmented array.

Dense vectors are plain NumPy arrays. Sparse and sparse-binary vectors are
small NumPy-backed containers. The handful of operations a layer needs on its
input (linear map, outer product, copy/restore, dropout mask) are
single-dispatch functions, so layer code is written once for all three
encodings.
"""

from functools import singledispatch
from typing import Iterable, Optional

import numpy as np

from .activations import Activation
from .errors import UsageOrderError


class SparseArray:
    """
    A 1-D sparse vector: sorted active indices and their values.

    The set of active indices is fixed at construction. Values of active
    entries can be changed, inactive entries cannot be written.

    Parameters
    ----------
    size : int
        Length of the dense equivalent.
    indices : iterable of int
        Active positions (any order, no duplicates).
    values : iterable of float
        Values of the active positions, aligned with `indices`.
    """

    def __init__(self, size: int, indices: Iterable[int], values: Iterable[float]) -> None:
        idx = np.asarray(list(indices), dtype=np.int64)
        vals = np.asarray(list(values), dtype=np.float64)
        if idx.shape != vals.shape:
            raise ValueError("indices and values must have the same length")
        if idx.size and (idx.min() < 0 or idx.max() >= size):
            raise ValueError(f"Sparse indices out of range [0, {size}).")
        if np.unique(idx).size != idx.size:
            raise ValueError("Duplicate sparse indices.")
        order = np.argsort(idx)
        self.size = int(size)
        self.indices = idx[order]
        self.values = vals[order]

    @classmethod
    def from_dense(cls, dense: np.ndarray) -> "SparseArray":
        dense = np.asarray(dense, dtype=np.float64)
        idx = np.flatnonzero(dense)
        return cls(dense.size, idx, dense[idx])

    @property
    def shape(self):
        return (self.size,)

    def _position(self, i: int) -> int:
        pos = int(np.searchsorted(self.indices, i))
        if pos < self.indices.size and self.indices[pos] == i:
            return pos
        return -1

    def __getitem__(self, i: int) -> float:
        pos = self._position(i)
        return float(self.values[pos]) if pos >= 0 else 0.0

    def __setitem__(self, i: int, value: float) -> None:
        pos = self._position(i)
        if pos < 0:
            raise ValueError(
                f"Cannot set inactive index {i}: sparse arrays are append-only at construction."
            )
        self.values[pos] = value

    def to_dense(self) -> np.ndarray:
        out = np.zeros(self.size)
        out[self.indices] = self.values
        return out

    def copy(self) -> "SparseArray":
        return SparseArray(self.size, self.indices.copy(), self.values.copy())

    def __repr__(self) -> str:
        return f"SparseArray(size={self.size}, nnz={self.indices.size})"


class SparseBinaryArray:
    """A 1-D vector whose only non-zero value is 1, stored as active indices."""

    def __init__(self, size: int, active_indices: Iterable[int]) -> None:
        idx = np.unique(np.asarray(list(active_indices), dtype=np.int64))
        if idx.size and (idx[0] < 0 or idx[-1] >= size):
            raise ValueError(f"Active indices out of range [0, {size}).")
        self.size = int(size)
        self.active_indices = idx

    @property
    def shape(self):
        return (self.size,)

    def to_dense(self) -> np.ndarray:
        out = np.zeros(self.size)
        out[self.active_indices] = 1.0
        return out

    def copy(self) -> "SparseBinaryArray":
        return SparseBinaryArray(self.size, self.active_indices.copy())

    def __repr__(self) -> str:
        return f"SparseBinaryArray(size={self.size}, active={self.active_indices.tolist()})"


# ---------------------------------------------------------------------
# Encoding dispatch
# ---------------------------------------------------------------------


@singledispatch
def dot(x, w: np.ndarray) -> np.ndarray:
    """Return w @ x, with w of shape (out, in)."""
    raise TypeError(f"Unsupported input array type: {type(x).__name__}")


@dot.register
def _(x: np.ndarray, w: np.ndarray) -> np.ndarray:
    return w @ x


@dot.register
def _(x: SparseArray, w: np.ndarray) -> np.ndarray:
    return w[:, x.indices] @ x.values


@dot.register
def _(x: SparseBinaryArray, w: np.ndarray) -> np.ndarray:
    return w[:, x.active_indices].sum(axis=1)


@singledispatch
def outer(x, g: np.ndarray) -> np.ndarray:
    """Return the dense matrix g ⊗ x (the gradient of w in w @ x)."""
    raise TypeError(f"Unsupported input array type: {type(x).__name__}")


@outer.register
def _(x: np.ndarray, g: np.ndarray) -> np.ndarray:
    return np.outer(g, x)


@outer.register
def _(x: SparseArray, g: np.ndarray) -> np.ndarray:
    out = np.zeros((g.size, x.size))
    out[:, x.indices] = np.outer(g, x.values)
    return out


@outer.register
def _(x: SparseBinaryArray, g: np.ndarray) -> np.ndarray:
    out = np.zeros((g.size, x.size))
    out[:, x.active_indices] = g[:, None]
    return out


@singledispatch
def to_dense(x) -> np.ndarray:
    raise TypeError(f"Unsupported input array type: {type(x).__name__}")


@to_dense.register
def _(x: np.ndarray) -> np.ndarray:
    return x


@to_dense.register(SparseArray)
@to_dense.register(SparseBinaryArray)
def _(x) -> np.ndarray:
    return x.to_dense()


@singledispatch
def copy_values(x):
    """Return an independent copy of x in the same encoding."""
    raise TypeError(f"Unsupported input array type: {type(x).__name__}")


@copy_values.register
def _(x: np.ndarray):
    return np.array(x, dtype=np.float64, copy=True)


@copy_values.register(SparseArray)
@copy_values.register(SparseBinaryArray)
def _(x):
    return x.copy()


@singledispatch
def restore_values(dst, src) -> None:
    """Overwrite dst in place with the content of src (same encoding and structure)."""
    raise TypeError(f"Unsupported input array type: {type(dst).__name__}")


@restore_values.register
def _(dst: np.ndarray, src) -> None:
    dst[...] = src


@restore_values.register
def _(dst: SparseArray, src) -> None:
    dst.indices = src.indices.copy()
    dst.values = src.values.copy()


@restore_values.register
def _(dst: SparseBinaryArray, src) -> None:
    dst.active_indices = src.active_indices.copy()


@singledispatch
def apply_mask(x, mask: np.ndarray) -> None:
    """Multiply x element-wise by a dense mask, in place."""
    raise TypeError(f"Unsupported input array type: {type(x).__name__}")


@apply_mask.register
def _(x: np.ndarray, mask: np.ndarray) -> None:
    x *= mask


@apply_mask.register
def _(x: SparseArray, mask: np.ndarray) -> None:
    x.values *= mask[x.indices]


@apply_mask.register
def _(x: SparseBinaryArray, mask: np.ndarray) -> None:
    raise TypeError("A sparse binary array cannot hold rescaled values.")


def size_of(x) -> int:
    if isinstance(x, np.ndarray):
        return int(x.size)
    return x.size


# ---------------------------------------------------------------------
# AugmentedArray
# ---------------------------------------------------------------------


class AugmentedArray:
    """
    A values array with optional errors, relevance and activation.

    `errors` and `relevance` exist only after the matching pass assigned
    them; reading them earlier raises UsageOrderError. When an activation is
    set, `activate()` keeps the pre-activation values so that the derivative
    can be evaluated at them.

    Attributes:
        values: The tensor (dense, sparse or sparse-binary).
        activation: Optional Activation applied by `activate()`.
    """

    def __init__(self, values=None, size: Optional[int] = None, activation: Optional[Activation] = None) -> None:
        if values is None:
            if size is None:
                raise ValueError("Either values or size must be given.")
            values = np.zeros(size)
        self.values = values
        self.activation = activation
        self._values_not_activated = None
        self._errors: Optional[np.ndarray] = None
        self._relevance: Optional[np.ndarray] = None

    @classmethod
    def zeros(cls, size: int, activation: Optional[Activation] = None) -> "AugmentedArray":
        return cls(np.zeros(size), activation=activation)

    @property
    def size(self) -> int:
        return size_of(self.values)

    @property
    def has_activation(self) -> bool:
        return self.activation is not None

    def set_activation(self, activation: Optional[Activation]) -> None:
        self.activation = activation

    # ---- values ----

    def assign_values(self, values) -> None:
        """Store a copy of `values` (pre-activation bookkeeping is reset)."""
        if size_of(values) != self.size:
            raise ValueError(f"Size mismatch: {size_of(values)} != {self.size}")
        self.values = copy_values(values)
        self._values_not_activated = None

    @property
    def values_not_activated(self):
        """The values before the last `activate()` (the values if never activated)."""
        if self._values_not_activated is None:
            return self.values
        return self._values_not_activated

    def activate(self) -> None:
        self._values_not_activated = self.values
        if self.activation is not None:
            self.values = self.activation.f(self.values)

    def calculate_activation_deriv(self) -> np.ndarray:
        """df evaluated at the pre-activation values (a Jacobian for softmax)."""
        if self.activation is None:
            raise ValueError("No activation set.")
        return self.activation.df(self.values_not_activated)

    # ---- errors ----

    @property
    def has_errors(self) -> bool:
        return self._errors is not None

    @property
    def errors(self) -> np.ndarray:
        if self._errors is None:
            raise UsageOrderError("The errors have not been assigned yet.")
        return self._errors

    def assign_errors(self, errors: np.ndarray) -> None:
        errors = np.asarray(errors, dtype=np.float64)
        if errors.shape != (self.size,):
            raise ValueError(f"Errors shape {errors.shape} != ({self.size},)")
        self._errors = errors.copy()

    def add_errors(self, errors: np.ndarray) -> None:
        self.assign_errors(self.errors + errors)

    # ---- relevance ----

    @property
    def has_relevance(self) -> bool:
        return self._relevance is not None

    @property
    def relevance(self) -> np.ndarray:
        if self._relevance is None:
            raise UsageOrderError("The relevance has not been assigned yet.")
        return self._relevance

    def assign_relevance(self, relevance: np.ndarray) -> None:
        relevance = np.asarray(relevance, dtype=np.float64)
        if relevance.shape != (self.size,):
            raise ValueError(f"Relevance shape {relevance.shape} != ({self.size},)")
        self._relevance = relevance.copy()

    def add_relevance(self, relevance: np.ndarray) -> None:
        if self._relevance is None:
            self.assign_relevance(relevance)
        else:
            self.assign_relevance(self._relevance + relevance)

    def __repr__(self) -> str:
        act = self.activation.name if self.activation else None
        return f"AugmentedArray(size={self.size}, activation={act})"
