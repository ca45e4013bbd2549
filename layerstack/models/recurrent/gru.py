# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Gated recurrent unit.

    r = sigmoid(Wr x + br + Wrr yPrev)
    p = sigmoid(Wp x + bp + Wpr yPrev)
    c = f(Wc x + bc + Wcr (yPrev * r))
    y = p * c + (1 - p) * yPrev

All the `yPrev` terms are omitted at the first step of a sequence.
"""

import numpy as np

from ...activations import SIGMOID
from ...arrays import AugmentedArray, dot
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, ParamsErrorsList, RecurrentLinearParams
from .base import RecurrentLayer, gate_deriv, unit_errors


class GRULayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.reset_gate = RecurrentLinearParams(input_size, output_size, name="reset_gate")
        self.partition_gate = RecurrentLinearParams(input_size, output_size, name="partition_gate")
        self.candidate = RecurrentLinearParams(input_size, output_size, name="candidate")
        for unit in (self.reset_gate, self.partition_gate, self.candidate):
            self._register_linear(unit)


class GRULayer(RecurrentLayer):
    """
    The activation function applies to the candidate; the output has none.

    After a backward, the errors of the gates hold the errors of their
    pre-activation values.
    """

    connection_type = ConnectionType.GRU

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        size = self.output_array.size
        self.reset_gate = AugmentedArray.zeros(size, SIGMOID)
        self.partition_gate = AugmentedArray.zeros(size, SIGMOID)
        self.candidate = AugmentedArray.zeros(size, self.activation_function)

    def _forward(self) -> None:
        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()

        r_in = dot(x, p.reset_gate.w.values) + p.reset_gate.b.values
        p_in = dot(x, p.partition_gate.w.values) + p.partition_gate.b.values
        c_in = dot(x, p.candidate.w.values) + p.candidate.b.values

        # the recurrent terms enter the gates before their activation
        if y_prev is not None:
            r_in += p.reset_gate.wr.values @ y_prev
            p_in += p.partition_gate.wr.values @ y_prev

        self.reset_gate.assign_values(r_in)
        self.partition_gate.assign_values(p_in)
        self.reset_gate.activate()
        self.partition_gate.activate()

        # the candidate recurrent term needs the activated reset gate
        if y_prev is not None:
            c_in += p.candidate.wr.values @ (y_prev * self.reset_gate.values)

        self.candidate.assign_values(c_in)
        self.candidate.activate()

        pv = self.partition_gate.values
        y = pv * self.candidate.values
        if y_prev is not None:
            y += (1.0 - pv) * y_prev
        self.output_array.assign_values(y)

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self._add_recurrent_errors()

        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()
        gy = self.output_array.errors
        r = self.reset_gate.values
        pv = self.partition_gate.values
        c = self.candidate.values

        gc = gy * pv * gate_deriv(self.candidate)
        if y_prev is not None:
            gp = gy * (c - y_prev) * gate_deriv(self.partition_gate)
            gr = (p.candidate.wr.values.T @ gc) * y_prev * gate_deriv(self.reset_gate)
        else:
            gp = gy * c * gate_deriv(self.partition_gate)
            gr = np.zeros_like(gy)

        self.reset_gate.assign_errors(gr)
        self.partition_gate.assign_errors(gp)
        self.candidate.assign_errors(gc)

        if propagate_to_input:
            self.input_array.assign_errors(
                p.reset_gate.w.values.T @ gr + p.partition_gate.w.values.T @ gp + p.candidate.w.values.T @ gc
            )

        return self._params_errors(
            *unit_errors(p.reset_gate, gr, x, y_prev),
            *unit_errors(p.partition_gate, gp, x, y_prev),
            *unit_errors(p.candidate, gc, x, None if y_prev is None else y_prev * r),
        )

    def _recurrent_errors(self, next_layer: "GRULayer") -> np.ndarray:
        p = self.params
        return (
            next_layer.output_array.errors * (1.0 - next_layer.partition_gate.values)
            + p.reset_gate.wr.values.T @ next_layer.reset_gate.errors
            + p.partition_gate.wr.values.T @ next_layer.partition_gate.errors
            + (p.candidate.wr.values.T @ next_layer.candidate.errors) * next_layer.reset_gate.values
        )
