import torch

import torch.nn as nn
import torch.nn.functional as F

from torch import Tensor
from typing import Any
from typing import Dict
from typing import Optional

from ...toolkit import Initializer


class SparseLookup(nn.Module):
    """
    Sum of the rows selected by every active id, plus a learned bias.

    `ids` are `long` tensors shaped `[batch, num_active]`, each id indexing the
    `num_features` rows. Both the rows and the bias start from zeros.
    """

    def __init__(self, num_features: int, out_dim: int):
        super().__init__()
        self.lookup = nn.EmbeddingBag(num_features, out_dim, mode="sum")
        self.bias = nn.Parameter(torch.empty(out_dim))
        initializer = Initializer()
        initializer.initialize(self.lookup.weight, "zeros")
        initializer.initialize(self.bias, "zeros")
        self.num_features, self.out_dim = num_features, out_dim

    @property
    def weight(self) -> Tensor:
        return self.lookup.weight

    def extra_repr(self) -> str:
        return f"{self.num_features} -> {self.out_dim}"

    def forward(self, ids: Tensor) -> Tensor:
        return self.lookup(ids) + self.bias


class Embedding(nn.Module):
    def __init__(
        self,
        in_dim: int,
        out_dim: int,
        init_method: Optional[str] = None,
        init_config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__()
        weights = torch.empty(in_dim, out_dim)
        if init_method is None:
            nn.init.normal_(weights)
        else:
            initializer = Initializer(init_config)
            initializer.initialize(weights, init_method)
        self.weights = nn.Parameter(weights)
        self.in_dim, self.out_dim = in_dim, out_dim

    def extra_repr(self) -> str:
        return f"embedding: {self.in_dim} -> {self.out_dim}"

    def forward(self, ids: Tensor) -> Tensor:
        return F.embedding(ids, self.weights)


__all__ = [
    "SparseLookup",
    "Embedding",
]
