# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from gradcheck import build_layer, build_params
from layerstack import FixedLayersWindow, UsageOrderError
from layerstack.layer import epsilon_relevance, linear_contributions
from layerstack.utils import RELEVANCE_EPS, signed_stabilizer

logger = logging.getLogger(__name__)


def conserved_total(y_in, out_relevance):
    """The total input relevance of the epsilon rule: sum_j R_j * y_j / (y_j + eps * sign(y_j))."""
    return float((out_relevance * y_in / signed_stabilizer(y_in)).sum())


def test_signed_stabilizer():
    y = np.array([-2.0, 0.0, 3.0])
    assert_allclose(signed_stabilizer(y), [-2.0 - RELEVANCE_EPS, RELEVANCE_EPS, 3.0 + RELEVANCE_EPS])


def test_linear_contributions_sum_to_the_pre_activation():
    params = build_params("Feedforward", [4], 3)
    x = np.array([0.5, -1.0, 2.0, 0.0])
    contrib = linear_contributions(params.unit.w, params.unit.b, x, x.size)
    assert_allclose(contrib.sum(axis=1), params.unit.w.values @ x + params.unit.b.values)


def test_feedforward_relevance():
    layer = build_layer("Feedforward", [4], 3, "tanh")
    x = np.array([0.5, -1.0, 2.0, 0.3])
    layer.set_input(x)
    contributions = layer.params.zeros_copy()
    layer.forward(contributions)

    # the forward with contributions computes the same output
    expected = np.tanh(layer.params.unit.w.values @ x + layer.params.unit.b.values)
    assert_allclose(layer.output_array.values, expected)

    out_relevance = np.array([0.2, 0.5, 0.3])
    layer.set_output_relevance(out_relevance)
    layer.set_input_relevance(contributions)
    relevance = layer.input_array.relevance

    y_in = layer.output_array.values_not_activated
    assert_allclose(relevance, epsilon_relevance(contributions.unit.w.values, y_in, out_relevance))
    assert_allclose(relevance.sum(), conserved_total(y_in, out_relevance))

    layer.add_input_relevance(contributions)
    assert_allclose(layer.input_array.relevance, 2.0 * relevance)


def test_simple_recurrent_relevance():
    rng = np.random.default_rng(2)
    params = build_params("SimpleRecurrent", [4], 3)
    window = FixedLayersWindow()
    layer = build_layer("SimpleRecurrent", [4], 3, "tanh", params=params, window=window)
    prev = build_layer("SimpleRecurrent", [4], 3, "tanh", params=params, window=FixedLayersWindow(next_state=layer))
    prev.set_init_hidden(rng.uniform(-1.0, 1.0, size=3))
    window.prev_state = prev

    layer.set_input(rng.uniform(-1.0, 1.0, size=4))
    contributions = params.zeros_copy()
    layer.forward(contributions)

    out_relevance = np.array([0.6, 0.1, 0.3])
    layer.set_output_relevance(out_relevance)
    layer.set_input_relevance(contributions)
    layer.set_recurrent_relevance(contributions)

    y_in = layer.output_array.values_not_activated
    total = layer.input_array.relevance.sum() + prev.output_array.relevance.sum()
    assert_allclose(total, conserved_total(y_in, out_relevance))


def test_recurrent_relevance_requires_a_prev_state():
    layer = build_layer("SimpleRecurrent", [4], 3, "tanh", window=FixedLayersWindow())
    layer.set_input(np.ones(4))
    contributions = layer.params.zeros_copy()
    layer.forward(contributions)
    layer.set_output_relevance(np.ones(3))
    with pytest.raises(UsageOrderError):
        layer.set_recurrent_relevance(contributions)
