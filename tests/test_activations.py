# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from gradcheck import numerical_grad
from layerstack.activations import ACTIVATIONS, SOFTMAX, activation_deriv, get_activation

logger = logging.getLogger(__name__)

# points away from the kinks of relu, hardsigmoid and hardtanh
X = np.array([-2.3, -0.7, -0.2, 0.1, 0.6, 1.9])


@pytest.mark.parametrize("name", sorted(n for n, a in ACTIVATIONS.items() if not a.jacobian))
def test_derivative_matches_finite_differences(name):
    act = ACTIVATIONS[name]
    x = X.copy()
    for i in range(x.size):
        def f():
            return float(act.f(x)[i])

        grad = numerical_grad(f, x)
        assert_allclose(act.df(X)[i], grad[i], rtol=1e-5, atol=1e-7)


def test_softmax_jacobian():
    x = X.copy()
    jac = SOFTMAX.df(X)
    for i in range(x.size):
        def f():
            return float(SOFTMAX.f(x)[i])

        assert_allclose(jac[i], numerical_grad(f, x), rtol=1e-5, atol=1e-8)


def test_softmax_is_stable():
    s = SOFTMAX.f(np.array([1000.0, 1001.0, 1002.0]))
    assert np.all(np.isfinite(s))
    assert_allclose(s.sum(), 1.0)


def test_get_activation():
    assert get_activation(None) is None
    assert get_activation("tanh") is ACTIVATIONS["tanh"]
    assert get_activation(SOFTMAX) is SOFTMAX
    with pytest.raises(KeyError):
        get_activation("swish")


def test_activation_deriv():
    assert_allclose(activation_deriv(None, X), np.ones_like(X))
    with pytest.raises(ValueError):
        activation_deriv(SOFTMAX, X)
