# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Single-input, non-recurrent layers.

- Feedforward:      y = f(W x + b)
- Highway:          y = t * f(Wi x + bi) + (1 - t) * x,  t = sigmoid(Wt x + bt)
- Norm:             y = f(g * (x - mu) / sigma + b)
- SquaredDistance:  y = ||B x||^2
"""

import numpy as np

from ..activations import SIGMOID, activation_deriv
from ..arrays import AugmentedArray, dot, outer, to_dense
from ..layer import Layer, SupportsRelevance, epsilon_relevance, linear_contributions
from ..layer_types import ConnectionType
from ..parameters import LayerParameters, LinearParams, ParamsArray, ParamsErrorsList


class FeedforwardLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.unit = LinearParams(input_size, output_size, name="unit")
        self._register_linear(self.unit)


class FeedforwardLayer(Layer, SupportsRelevance):
    """A fully connected layer with an optional output activation."""

    connection_type = ConnectionType.FEEDFORWARD

    def __init__(self, input_array, output_array, params, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, activation, dropout, rng)
        self.output_array.set_activation(self.activation_function)

    def _forward(self) -> None:
        unit = self.params.unit
        self.output_array.assign_values(dot(self.input_array.values, unit.w.values) + unit.b.values)
        self.output_array.activate()

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self.apply_output_activation_deriv()

        unit = self.params.unit
        gy = self.output_array.errors
        if propagate_to_input:
            self.input_array.assign_errors(unit.w.values.T @ gy)

        return self._params_errors((unit.w, outer(self.input_array.values, gy)), (unit.b, gy.copy()))

    def _forward_with_contributions(self, contributions: FeedforwardLayerParameters) -> None:
        x = self.input_array.values
        unit = self.params.unit
        contrib = linear_contributions(unit.w, unit.b, x, x.size)
        contributions.unit.w.assign(contrib)
        self.output_array.assign_values(contrib.sum(axis=1))
        self.output_array.activate()

    def _input_relevance(self, contributions: FeedforwardLayerParameters) -> np.ndarray:
        return epsilon_relevance(
            contributions.unit.w.values,
            self.output_array.values_not_activated,
            self.output_array.relevance,
        )


class HighwayLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.input_unit = LinearParams(input_size, output_size, name="input_unit")
        self.transform_gate = LinearParams(input_size, output_size, name="transform_gate")
        self._register_linear(self.input_unit)
        self._register_linear(self.transform_gate)


class HighwayLayer(Layer):
    """
    Highway layer: a sigmoid transform gate mixes a transformed input with the
    input itself, so input and output sizes are equal.
    """

    connection_type = ConnectionType.HIGHWAY

    def __init__(self, input_array, output_array, params, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, activation, dropout, rng)
        size = self.output_array.size
        self.input_unit = AugmentedArray.zeros(size, self.activation_function)
        self.transform_gate = AugmentedArray.zeros(size, SIGMOID)

    def _forward(self) -> None:
        x = self.input_array.values
        p = self.params

        self.input_unit.assign_values(dot(x, p.input_unit.w.values) + p.input_unit.b.values)
        self.transform_gate.assign_values(dot(x, p.transform_gate.w.values) + p.transform_gate.b.values)
        self.input_unit.activate()
        self.transform_gate.activate()

        t = self.transform_gate.values
        self.output_array.assign_values(t * self.input_unit.values + (1.0 - t) * to_dense(x))

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        x = self.input_array.values
        p = self.params
        gy = self.output_array.errors
        t = self.transform_gate.values

        g_in = gy * t * activation_deriv(self.input_unit.activation, self.input_unit.values_not_activated)
        g_t = gy * (self.input_unit.values - to_dense(x)) * self.transform_gate.calculate_activation_deriv()
        self.input_unit.assign_errors(g_in)
        self.transform_gate.assign_errors(g_t)

        if propagate_to_input:
            self.input_array.assign_errors(
                p.input_unit.w.values.T @ g_in + p.transform_gate.w.values.T @ g_t + gy * (1.0 - t)
            )

        return self._params_errors(
            (p.input_unit.w, outer(x, g_in)),
            (p.input_unit.b, g_in),
            (p.transform_gate.w, outer(x, g_t)),
            (p.transform_gate.b, g_t),
        )


class NormLayerParameters(LayerParameters):
    def __init__(self, size: int) -> None:
        super().__init__([size], size)
        self.g = ParamsArray.zeros((size,), name="g")
        self.b = ParamsArray.zeros((size,), name="b")
        self.weights_list.append(self.g)
        self.biases_list.append(self.b)


class NormLayer(Layer):
    """
    Layer normalization over the features of the input:

        mu = mean(x)
        sigma = sqrt(var(x) + eps)
        xhat = (x - mu) / sigma
        y = f(g * xhat + b)
    """

    connection_type = ConnectionType.NORM
    eps = 1e-5

    def __init__(self, input_array, output_array, params, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, activation, dropout, rng)
        self.output_array.set_activation(self.activation_function)
        self._cache = None

    def _forward(self) -> None:
        x = to_dense(self.input_array.values)
        mu = x.mean()
        sigma = np.sqrt(((x - mu) ** 2).mean() + self.eps)
        xhat = (x - mu) / sigma
        self._cache = (xhat, sigma)
        self.output_array.assign_values(self.params.g.values * xhat + self.params.b.values)
        self.output_array.activate()

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self.apply_output_activation_deriv()

        xhat, sigma = self._cache
        gy = self.output_array.errors

        if propagate_to_input:
            ghat = gy * self.params.g.values
            self.input_array.assign_errors((ghat - ghat.mean() - xhat * (ghat * xhat).mean()) / sigma)

        return self._params_errors((self.params.g, gy * xhat), (self.params.b, gy.copy()))


class SquaredDistanceLayerParameters(LayerParameters):
    def __init__(self, input_size: int, rank: int) -> None:
        super().__init__([input_size], 1)
        self.rank = rank
        self.wb = ParamsArray.zeros((rank, input_size), name="wb")
        self.weights_list.append(self.wb)


class SquaredDistanceLayer(Layer):
    """The squared norm of a low-rank projection of the input: y = ||B x||^2."""

    connection_type = ConnectionType.SQUARED_DISTANCE

    def __init__(self, input_array, output_array, params, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, activation, dropout, rng)
        self._bx = None

    def _forward(self) -> None:
        self._bx = dot(self.input_array.values, self.params.wb.values)
        self.output_array.assign_values(np.array([self._bx @ self._bx]))

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        gy = self.output_array.errors[0]
        g_bx = 2.0 * gy * self._bx

        if propagate_to_input:
            self.input_array.assign_errors(self.params.wb.values.T @ g_bx)

        return self._params_errors((self.params.wb, outer(self.input_array.values, g_bx)))
