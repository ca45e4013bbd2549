# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import numpy as np

from ...arrays import dot
from ...errors import UsageOrderError
from ...layer import SupportsRelevance, epsilon_relevance, linear_contributions
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, ParamsErrorsList, RecurrentLinearParams
from .base import RecurrentLayer, unit_errors


class SimpleRecurrentLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.unit = RecurrentLinearParams(input_size, output_size, name="unit")
        self._register_linear(self.unit)


class SimpleRecurrentLayer(RecurrentLayer, SupportsRelevance):
    """
    Elman recurrent layer:

        y = f(W x + b + Wr yPrev)

    Supports relevance propagation, both onto the input and onto the output
    of the previous state.
    """

    connection_type = ConnectionType.SIMPLE_RECURRENT

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        self.output_array.set_activation(self.activation_function)

    def _forward(self) -> None:
        unit = self.params.unit
        y = dot(self.input_array.values, unit.w.values) + unit.b.values
        y_prev = self.prev_output()
        if y_prev is not None:
            y += unit.wr.values @ y_prev
        self.output_array.assign_values(y)
        self.output_array.activate()

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self._add_recurrent_errors()
        self.apply_output_activation_deriv()

        gy = self.output_array.errors
        unit = self.params.unit
        if propagate_to_input:
            self.input_array.assign_errors(unit.w.values.T @ gy)

        return self._params_errors(*unit_errors(unit, gy.copy(), self.input_array.values, self.prev_output()))

    def _recurrent_errors(self, next_layer: "SimpleRecurrentLayer") -> np.ndarray:
        # the errors of the next output are already those of its pre-activation
        return self.params.unit.wr.values.T @ next_layer.output_array.errors

    # ---- relevance ----

    def _forward_with_contributions(self, contributions: SimpleRecurrentLayerParameters) -> None:
        x = self.input_array.values
        unit = self.params.unit
        contrib = linear_contributions(unit.w, unit.b, x, x.size)
        contributions.unit.w.assign(contrib)
        y = contrib.sum(axis=1)

        y_prev = self.prev_output()
        if y_prev is not None:
            rec_contrib = unit.wr.values * y_prev[np.newaxis, :]
            contributions.unit.wr.assign(rec_contrib)
            y += rec_contrib.sum(axis=1)

        self.output_array.assign_values(y)
        self.output_array.activate()

    def _input_relevance(self, contributions: SimpleRecurrentLayerParameters) -> np.ndarray:
        return epsilon_relevance(
            contributions.unit.w.values,
            self.output_array.values_not_activated,
            self.output_array.relevance,
        )

    def set_recurrent_relevance(self, contributions: SimpleRecurrentLayerParameters) -> None:
        """
        Assign to the output of the previous state its relevance with respect
        to the output of this one.

        Raises:
            UsageOrderError: If there is no previous state.
        """
        prev = self.prev_state()
        if prev is None:
            raise UsageOrderError("Recurrent relevance requires a previous state.")
        prev.output_array.assign_relevance(
            epsilon_relevance(
                contributions.unit.wr.values,
                self.output_array.values_not_activated,
                self.output_array.relevance,
            )
        )
