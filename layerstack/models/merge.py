# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Merge layers: several dense inputs, one dense output.

BatchNorm is the exception with one output per input.
"""

from abc import abstractmethod
from typing import List, Sequence

import numpy as np

from ..arrays import AugmentedArray
from ..errors import ConfigurationError
from ..layer import Layer
from ..layer_types import ConnectionType
from ..parameters import LayerParameters, LinearParams, ParamsArray, ParamsErrorsList


class MergeLayerParameters(LayerParameters):
    """Parameters of the merge layers without weights (Concat, Sum, Sub, Avg, Product)."""

    def __init__(self, input_sizes: Sequence[int], output_size: int) -> None:
        super().__init__(input_sizes, output_size)


class DenseInputsLayer(Layer):
    """Base of the layers with several dense inputs."""

    def __init__(self, input_arrays, output_array, params, activation=None, dropout=0.0, rng=None):
        super().__init__(input_arrays, output_array, params, activation, dropout, rng)
        if not self.dense_input:
            raise ConfigurationError(f"{type(self).__name__} requires dense inputs.")
        self.output_array.set_activation(self.activation_function)

    @property
    def inputs(self) -> List[np.ndarray]:
        return [a.values for a in self.input_arrays]


class MergeLayer(DenseInputsLayer):
    """Base of the merge layers: one output, activation on the merged values."""

    def _forward(self) -> None:
        self.output_array.assign_values(self._merge(self.inputs))
        self.output_array.activate()

    @abstractmethod
    def _merge(self, xs: List[np.ndarray]) -> np.ndarray:
        ...

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self.apply_output_activation_deriv()
        gy = self.output_array.errors
        gxs, errors_list = self._merge_backward(gy)
        if propagate_to_input:
            for array, gx in zip(self.input_arrays, gxs):
                array.assign_errors(gx)
        return errors_list

    @abstractmethod
    def _merge_backward(self, gy: np.ndarray):
        ...


class ConcatLayer(MergeLayer):
    connection_type = ConnectionType.CONCAT

    def _merge(self, xs):
        return np.concatenate(xs)

    def _merge_backward(self, gy):
        splits = np.cumsum(self.params.input_sizes)[:-1]
        return np.split(gy, splits), ParamsErrorsList()


class SumLayer(MergeLayer):
    connection_type = ConnectionType.SUM

    def _merge(self, xs):
        return np.sum(xs, axis=0)

    def _merge_backward(self, gy):
        return [gy.copy() for _ in self.input_arrays], ParamsErrorsList()


class SubLayer(MergeLayer):
    connection_type = ConnectionType.SUB

    def _merge(self, xs):
        return xs[0] - xs[1]

    def _merge_backward(self, gy):
        return [gy.copy(), -gy], ParamsErrorsList()


class AvgLayer(MergeLayer):
    connection_type = ConnectionType.AVG

    def _merge(self, xs):
        return np.mean(xs, axis=0)

    def _merge_backward(self, gy):
        n = len(self.input_arrays)
        return [gy / n for _ in self.input_arrays], ParamsErrorsList()


class ProductLayer(MergeLayer):
    """Element-wise product of the inputs."""

    connection_type = ConnectionType.PRODUCT

    def _merge(self, xs):
        return np.prod(xs, axis=0)

    def _merge_backward(self, gy):
        xs = self.inputs
        gxs = []
        for k in range(len(xs)):
            others = np.ones_like(gy)
            for j, x in enumerate(xs):
                if j != k:
                    others = others * x
            gxs.append(gy * others)
        return gxs, ParamsErrorsList()


class ConcatFeedforwardLayerParameters(LayerParameters):
    def __init__(self, input_sizes: Sequence[int], output_size: int) -> None:
        super().__init__(input_sizes, output_size)
        self.unit = LinearParams(sum(self.input_sizes), output_size, name="unit")
        self._register_linear(self.unit)


class ConcatFeedforwardLayer(MergeLayer):
    """y = f(W concat(x1, ..., xn) + b)"""

    connection_type = ConnectionType.CONCAT_FEEDFORWARD

    def _merge(self, xs):
        self._concat = np.concatenate(xs)
        return self.params.unit.w.values @ self._concat + self.params.unit.b.values

    def _merge_backward(self, gy):
        unit = self.params.unit
        splits = np.cumsum(self.params.input_sizes)[:-1]
        gxs = np.split(unit.w.values.T @ gy, splits)
        return gxs, self._params_errors((unit.w, np.outer(gy, self._concat)), (unit.b, gy.copy()))


class AffineLayerParameters(LayerParameters):
    """One weight matrix per input and a shared bias."""

    def __init__(self, input_sizes: Sequence[int], output_size: int) -> None:
        super().__init__(input_sizes, output_size)
        self.w = [
            ParamsArray.zeros((output_size, size), name=f"w{k}") for k, size in enumerate(self.input_sizes)
        ]
        self.b = ParamsArray.zeros((output_size,), name="b")
        self.weights_list.extend(self.w)
        self.biases_list.append(self.b)


class AffineLayer(MergeLayer):
    """y = f(W1 x1 + ... + Wn xn + b)"""

    connection_type = ConnectionType.AFFINE

    def _merge(self, xs):
        y = self.params.b.values.copy()
        for w, x in zip(self.params.w, xs):
            y += w.values @ x
        return y

    def _merge_backward(self, gy):
        p = self.params
        gxs = [w.values.T @ gy for w in p.w]
        pairs = [(w, np.outer(gy, x)) for w, x in zip(p.w, self.inputs)]
        pairs.append((p.b, gy.copy()))
        return gxs, self._params_errors(*pairs)


class BiaffineLayerParameters(LayerParameters):
    def __init__(self, input_size1: int, input_size2: int, output_size: int) -> None:
        super().__init__([input_size1, input_size2], output_size)
        self.w1 = ParamsArray.zeros((output_size, input_size1), name="w1")
        self.w2 = ParamsArray.zeros((output_size, input_size2), name="w2")
        self.w = ParamsArray.zeros((output_size, input_size1, input_size2), name="w")
        self.b = ParamsArray.zeros((output_size,), name="b")
        self.weights_list.extend([self.w1, self.w2, self.w])
        self.biases_list.append(self.b)


class BiaffineLayer(MergeLayer):
    """y_j = f(x1' W_j x2 + W1_j x1 + W2_j x2 + b_j)"""

    connection_type = ConnectionType.BIAFFINE

    def _merge(self, xs):
        x1, x2 = xs
        p = self.params
        return np.einsum("jab,a,b->j", p.w.values, x1, x2) + p.w1.values @ x1 + p.w2.values @ x2 + p.b.values

    def _merge_backward(self, gy):
        x1, x2 = self.inputs
        p = self.params
        gx1 = p.w1.values.T @ gy + np.einsum("j,jab,b->a", gy, p.w.values, x2)
        gx2 = p.w2.values.T @ gy + np.einsum("j,jab,a->b", gy, p.w.values, x1)
        gw = gy[:, None, None] * np.outer(x1, x2)[None, :, :]
        return [gx1, gx2], self._params_errors(
            (p.w1, np.outer(gy, x1)),
            (p.w2, np.outer(gy, x2)),
            (p.w, gw),
            (p.b, gy.copy()),
        )


class BatchNormLayerParameters(LayerParameters):
    def __init__(self, num_inputs: int, size: int) -> None:
        super().__init__([size] * num_inputs, size)
        self.g = ParamsArray.zeros((size,), name="g")
        self.b = ParamsArray.zeros((size,), name="b")
        self.weights_list.append(self.g)
        self.biases_list.append(self.b)


class BatchNormLayer(DenseInputsLayer):
    """
    Normalizes each feature across the inputs, one output per input:

        y_k = f(g * (x_k - mean_k x) / sqrt(var_k x + eps) + b)

    `output_arrays[k]` holds the output of the k-th input; `output_array` is
    the first of them.
    """

    connection_type = ConnectionType.BATCH_NORM
    eps = 1e-5

    def __init__(self, input_arrays, output_arrays, params, activation=None, dropout=0.0, rng=None):
        if isinstance(output_arrays, AugmentedArray):
            output_arrays = [output_arrays]
        if len(output_arrays) != len(input_arrays):
            raise ConfigurationError("BatchNorm requires one output array per input.")
        super().__init__(input_arrays, output_arrays[0], params, activation, dropout, rng)
        self.output_arrays: List[AugmentedArray] = list(output_arrays)
        for array in self.output_arrays:
            if array.size != params.output_size:
                raise ConfigurationError("BatchNorm outputs must have the same size as the inputs.")
            array.set_activation(self.activation_function)
        self._cache = None

    def set_output_errors(self, errors_list: Sequence[np.ndarray]) -> None:
        for array, errors in zip(self.output_arrays, errors_list):
            array.assign_errors(errors)

    def _forward(self) -> None:
        xs = np.stack(self.inputs)
        mu = xs.mean(axis=0)
        sigma = np.sqrt(((xs - mu) ** 2).mean(axis=0) + self.eps)
        xhat = (xs - mu) / sigma
        self._cache = (xhat, sigma)
        ys = self.params.g.values * xhat + self.params.b.values
        for array, y in zip(self.output_arrays, ys):
            array.assign_values(y)
            array.activate()

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        xhat, sigma = self._cache
        gys = []
        for array in self.output_arrays:
            errors = array.errors
            if array.has_activation:
                deriv = array.calculate_activation_deriv()
                errors = deriv.T @ errors if array.activation.jacobian else errors * deriv
            gys.append(errors)
        gy = np.stack(gys)

        if propagate_to_input:
            ghat = gy * self.params.g.values
            gx = (ghat - ghat.mean(axis=0) - xhat * (ghat * xhat).mean(axis=0)) / sigma
            for array, g in zip(self.input_arrays, gx):
                array.assign_errors(g)

        return self._params_errors((self.params.g, (gy * xhat).sum(axis=0)), (self.params.b, gy.sum(axis=0)))
