# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
The layer variants, each a `Layer` subclass paired with its
`LayerParameters` subclass.

Modules:
- feedforward: Feedforward, Highway, Norm, SquaredDistance
- merge: Concat, ConcatFeedforward, Sum, Sub, Avg, Product, Affine,
  Biaffine, BatchNorm
- recurrent: SimpleRecurrent, IndRNN, GRU, LSTM, CFN, RAN, DeltaRNN, LTM, TPR
"""
