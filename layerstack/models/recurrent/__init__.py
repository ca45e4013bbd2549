# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

from .base import RecurrentLayer
from .cfn import CFNLayer, CFNLayerParameters
from .deltarnn import DeltaRNNLayer, DeltaRNNLayerParameters
from .gru import GRULayer, GRULayerParameters
from .indrnn import IndRNNLayer, IndRNNLayerParameters
from .lstm import LSTMLayer, LSTMLayerParameters
from .ltm import LTMLayer, LTMLayerParameters
from .ran import RANLayer, RANLayerParameters
from .simple import SimpleRecurrentLayer, SimpleRecurrentLayerParameters
from .tpr import TPRLayer, TPRLayerParameters

__all__ = [
    "RecurrentLayer",
    "CFNLayer",
    "CFNLayerParameters",
    "DeltaRNNLayer",
    "DeltaRNNLayerParameters",
    "GRULayer",
    "GRULayerParameters",
    "IndRNNLayer",
    "IndRNNLayerParameters",
    "LSTMLayer",
    "LSTMLayerParameters",
    "LTMLayer",
    "LTMLayerParameters",
    "RANLayer",
    "RANLayerParameters",
    "SimpleRecurrentLayer",
    "SimpleRecurrentLayerParameters",
    "TPRLayer",
    "TPRLayerParameters",
]
