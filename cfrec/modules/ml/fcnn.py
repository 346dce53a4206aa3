import math

import torch.nn as nn

from torch import Tensor
from typing import List
from typing import Optional

from ..common import register_ml_module
from ..activations import build_activation
from ...toolkit import Initializer
from ...constants import DEFAULT_HIDDEN_LAYERS


class Mapping(nn.Module):
    """One hidden layer of the deep part : Linear -> (BN) -> activation -> (Dropout)."""

    def __init__(
        self,
        in_dim: int,
        out_dim: int,
        *,
        bias: Optional[bool] = None,
        activation: Optional[str] = "ReLU",
        batch_norm: bool = False,
        dropout: float = 0.0,
        init_method: str = "xavier_normal",
    ):
        super().__init__()
        if bias is None:
            bias = not batch_norm
        self.linear = nn.Linear(in_dim, out_dim, bias)
        initializer = Initializer({"gain": 1.0 / math.sqrt(2.0)})
        initializer.initialize(self.linear.weight, init_method)
        if self.linear.bias is not None:
            initializer.initialize(self.linear.bias, "zeros")
        self.bn = nn.BatchNorm1d(out_dim) if batch_norm else None
        self.activation = build_activation(activation)
        self.dropout = nn.Dropout(dropout) if 0.0 < dropout < 1.0 else None

    @property
    def weight(self) -> Tensor:
        return self.linear.weight

    @property
    def bias(self) -> Optional[Tensor]:
        return self.linear.bias

    def forward(self, net: Tensor) -> Tensor:
        net = self.linear(net)
        if self.bn is not None:
            net = self.bn(net)
        net = self.activation(net)
        if self.dropout is not None:
            net = self.dropout(net)
        return net


@register_ml_module("fcnn")
class FCNN(nn.Module):
    """
    Hidden `Mapping`s of widths `hidden_units`, followed by a plain projection to
    `output_dim` (the scores of the deep part).
    """

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        hidden_units: Optional[List[int]] = None,
        *,
        activation: str = "ReLU",
        batch_norm: bool = False,
        dropout: float = 0.0,
    ):
        super().__init__()
        if hidden_units is None:
            hidden_units = list(DEFAULT_HIDDEN_LAYERS)
        dims = [input_dim] + list(hidden_units)
        blocks: List[nn.Module] = [
            Mapping(
                in_dim,
                out_dim,
                activation=activation,
                batch_norm=batch_norm,
                dropout=dropout,
            )
            for in_dim, out_dim in zip(dims[:-1], dims[1:])
        ]
        blocks.append(nn.Linear(dims[-1], output_dim))
        self.hidden_units = list(hidden_units)
        self.net = nn.Sequential(*blocks)

    def forward(self, net: Tensor) -> Tensor:
        return self.net(net)


__all__ = [
    "Mapping",
    "FCNN",
]
