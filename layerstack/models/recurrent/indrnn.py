# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import numpy as np

from ...arrays import dot
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, LinearParams, ParamsArray, ParamsErrorsList
from .base import RecurrentLayer, unit_errors


class IndRNNLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.unit = LinearParams(input_size, output_size, name="unit")
        self.recurrent_weights = ParamsArray.zeros((output_size,), name="recurrent_weights")
        self._register_linear(self.unit)
        self.weights_list.append(self.recurrent_weights)


class IndRNNLayer(RecurrentLayer):
    """Independently recurrent layer: y = f(W x + b + wr * yPrev), wr a vector."""

    connection_type = ConnectionType.INDRNN

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        self.output_array.set_activation(self.activation_function)

    def _forward(self) -> None:
        p = self.params
        y = dot(self.input_array.values, p.unit.w.values) + p.unit.b.values
        y_prev = self.prev_output()
        if y_prev is not None:
            y += p.recurrent_weights.values * y_prev
        self.output_array.assign_values(y)
        self.output_array.activate()

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self._add_recurrent_errors()
        self.apply_output_activation_deriv()

        p = self.params
        gy = self.output_array.errors
        y_prev = self.prev_output()
        if propagate_to_input:
            self.input_array.assign_errors(p.unit.w.values.T @ gy)

        gwr = gy * y_prev if y_prev is not None else np.zeros(p.recurrent_weights.shape)
        return self._params_errors(
            *unit_errors(p.unit, gy.copy(), self.input_array.values, None),
            (p.recurrent_weights, gwr),
        )

    def _recurrent_errors(self, next_layer: "IndRNNLayer") -> np.ndarray:
        return self.params.recurrent_weights.values * next_layer.output_array.errors
