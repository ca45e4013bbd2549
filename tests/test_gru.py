# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from gradcheck import ATOL, RTOL, numerical_grad
from layerstack import AugmentedArray, FixedLayersWindow, ParamsErrorsCollector
from layerstack.models.recurrent import GRULayer, GRULayerParameters

logger = logging.getLogger(__name__)

X = np.array([-0.8, -0.9, -0.9, 1.0])
GOLD = np.array([0.57, 0.75, -0.15, 1.64, 0.45])


def build_params():
    params = GRULayerParameters(input_size=4, output_size=5)
    params.reset_gate.w.assign(
        [
            [0.5, 0.6, -0.8, -0.6],
            [0.7, -0.4, 0.1, -0.8],
            [0.7, -0.7, 0.3, 0.5],
            [0.8, -0.9, 0.0, -0.1],
            [0.4, 1.0, -0.7, 0.8],
        ]
    )
    params.partition_gate.w.assign(
        [
            [0.1, 0.4, -1.0, 0.4],
            [0.7, -0.2, 0.1, 0.0],
            [0.7, 0.8, -0.5, -0.3],
            [-0.9, 0.9, -0.3, -0.3],
            [-0.7, 0.6, -0.6, -0.8],
        ]
    )
    params.candidate.w.assign(
        [
            [-1.0, 0.2, 0.0, 0.2],
            [-0.7, 0.7, -0.3, -0.3],
            [0.3, -0.6, 0.0, 0.7],
            [-1.0, -0.6, 0.9, 0.8],
            [0.5, 0.8, -0.9, -0.8],
        ]
    )
    params.reset_gate.b.assign([0.4, 0.0, -0.3, 0.8, -0.4])
    params.partition_gate.b.assign([0.9, 0.2, -0.9, 0.2, -0.9])
    params.candidate.b.assign([0.5, -0.5, 1.0, 0.4, 0.9])
    params.reset_gate.wr.assign(
        [
            [0.0, 0.8, 0.8, -1.0, -0.7],
            [-0.7, -0.8, 0.2, -0.7, 0.7],
            [-0.9, 0.9, 0.7, -0.5, 0.5],
            [0.0, -0.1, 0.5, -0.2, -0.8],
            [-0.6, 0.6, 0.8, -0.1, -0.3],
        ]
    )
    params.partition_gate.wr.assign(
        [
            [0.1, -0.6, -1.0, -0.1, -0.4],
            [0.5, -0.9, 0.0, 0.8, 0.3],
            [-0.3, -0.9, 0.3, 1.0, -0.2],
            [0.7, 0.2, 0.3, -0.4, -0.6],
            [-0.2, 0.5, -0.2, -0.9, 0.4],
        ]
    )
    params.candidate.wr.assign(
        [
            [0.2, -0.3, -0.3, -0.5, -0.7],
            [0.4, -0.1, -0.6, -0.4, -0.8],
            [0.6, 0.6, 0.1, 0.7, -0.4],
            [-0.8, 0.9, 0.1, -0.1, -0.2],
            [-0.5, -0.3, -0.6, -0.6, 0.1],
        ]
    )
    return params


def build_layer(params, window):
    return GRULayer(
        AugmentedArray(X.copy()),
        AugmentedArray.zeros(5),
        params,
        layers_window=window,
        activation="tanh",
    )


@pytest.fixture
def params():
    return build_params()


def test_forward_without_prev_state(params):
    layer = build_layer(params, FixedLayersWindow())
    layer.forward()

    assert_allclose(layer.reset_gate.values, [0.40, 0.25, 0.50, 0.70, 0.45], atol=0.005)
    assert_allclose(layer.partition_gate.values, [0.85, 0.43, 0.12, 0.52, 0.24], atol=0.005)
    assert_allclose(layer.candidate.values, [0.87, -0.54, 0.96, 0.94, -0.21], atol=0.005)
    assert_allclose(layer.output_array.values, [0.74, -0.23, 0.11, 0.49, -0.05], atol=0.005)


def test_forward_is_deterministic(params):
    layer = build_layer(params, FixedLayersWindow())
    layer.forward()
    first = layer.output_array.values.copy()
    layer.forward()
    assert np.array_equal(first, layer.output_array.values)


def test_backward_without_prev_state(params):
    layer = build_layer(params, FixedLayersWindow())
    layer.forward()
    gy = layer.output_array.values - GOLD
    layer.set_errors(gy)
    errors = layer.backward(propagate_to_input=True)

    p = layer.partition_gate.values
    c = layer.candidate.values
    gc = gy * p * (1.0 - c ** 2)
    gp = gy * c * p * (1.0 - p)

    assert_allclose(layer.candidate.errors, gc, rtol=1e-12)
    assert_allclose(layer.partition_gate.errors, gp, rtol=1e-12)
    assert_allclose(layer.reset_gate.errors, np.zeros(5))
    assert_allclose(errors.get(params.candidate.w).values, np.outer(gc, X), rtol=1e-12)
    assert_allclose(errors.get(params.partition_gate.b).values, gp, rtol=1e-12)
    assert_allclose(
        layer.input_array.errors,
        params.partition_gate.w.values.T @ gp + params.candidate.w.values.T @ gc,
        rtol=1e-12,
    )

    # no previous state: the recurrent weights get no gradient
    for unit in (params.reset_gate, params.partition_gate, params.candidate):
        assert_allclose(errors.get(unit.wr).values, np.zeros((5, 5)))


def test_forward_with_prev_state(params):
    y_prev = np.array([0.2, -0.3, 0.4, 0.0, -0.6])
    prev = build_layer(params, FixedLayersWindow())
    prev.set_init_hidden(y_prev)
    layer = build_layer(params, FixedLayersWindow(prev_state=prev))
    layer.forward()

    no_prev = build_layer(params, FixedLayersWindow())
    no_prev.forward()
    p = layer.partition_gate.values
    assert_allclose(layer.output_array.values, p * layer.candidate.values + (1.0 - p) * y_prev)
    assert not np.allclose(layer.output_array.values, no_prev.output_array.values)


def test_backward_through_two_steps(params):
    """Gradients of a loss over two steps, summed in a collector, match finite differences."""
    rng = np.random.default_rng(0)
    w0, w1 = rng.uniform(-1.0, 1.0, size=(2, 5))

    window0 = FixedLayersWindow()
    window1 = FixedLayersWindow()
    step0 = build_layer(params, window0)
    step1 = build_layer(params, window1)
    window0.next_state = step1
    window1.prev_state = step0
    step1.set_input(np.array([0.3, -0.1, 0.5, 0.2]))

    def loss():
        step0.forward()
        step1.forward()
        return float(step0.output_array.values @ w0 + step1.output_array.values @ w1)

    loss()
    collector = ParamsErrorsCollector()
    step1.set_errors(w1)
    step1.backward(propagate_to_input=False, collector=collector)
    step0.set_errors(w0)
    step0.backward(propagate_to_input=True, collector=collector)
    input_errors = step0.input_array.errors.copy()

    for p in params.params_list:
        assert_allclose(collector.get_errors(p).values, numerical_grad(loss, p.values), rtol=RTOL, atol=ATOL)
    assert_allclose(input_errors, numerical_grad(loss, step0.input_array.values), rtol=RTOL, atol=ATOL)
