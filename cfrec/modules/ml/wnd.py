import torch

import torch.nn as nn
import torch.nn.functional as F

from torch import Tensor
from typing import List
from typing import Optional
from typing import Sequence

from .fcnn import FCNN
from .lookups import Embedding
from .lookups import SparseLookup
from ..common import register_ml_module
from ...toolkit import impute_oob
from ...constants import DEFAULT_EMBEDDING_STD


def _to_ids(net: Tensor) -> Tensor:
    return net.to(torch.long)


@register_ml_module("wide")
class Wide(nn.Module):
    """
    The wide part : a sparse lookup over the wide base & wide cross columns.

    The input holds one column-local id per wide column. Ids are shifted by the
    accumulated dimensions of the previous columns so that they index the
    combined `sum(wide_dims)` space, then one score per class is summed for each
    active id.
    """

    def __init__(self, wide_dims: Sequence[int], num_classes: int):
        super().__init__()
        wide_dims = list(wide_dims)
        offsets = [0] + wide_dims[:-1]
        offsets_tensor = torch.cumsum(torch.tensor(offsets, dtype=torch.long), 0)
        self.register_buffer("offsets", offsets_tensor)
        self.register_buffer("bounds", torch.tensor(wide_dims, dtype=torch.long))
        self.lookup = SparseLookup(sum(wide_dims), num_classes)
        self.num_columns = len(wide_dims)

    def forward(self, net: Tensor) -> Tensor:
        ids = impute_oob(_to_ids(net), self.bounds, "wide columns")
        return self.lookup(ids + self.offsets)


class DeepColumns(nn.Module):
    """
    Concatenates, in order, the indicator slice, one embedding per embed column
    and the continuous slice of the deep input.
    """

    def __init__(
        self,
        indicator_dims: Sequence[int],
        embed_in_dims: Sequence[int],
        embed_out_dims: Sequence[int],
        num_continuous: int,
        *,
        embedding_std: float = DEFAULT_EMBEDDING_STD,
    ):
        super().__init__()
        if len(embed_in_dims) != len(embed_out_dims):
            raise ValueError("size of embeddingColumns should match")
        self.indicator_width = sum(indicator_dims)
        self.num_embed = len(embed_in_dims)
        self.num_continuous = num_continuous
        init_config = {"mean": 0.0, "std": embedding_std}
        self.embeddings = nn.ModuleList(
            [
                Embedding(
                    in_dim,
                    out_dim,
                    "normal",
                    init_config,
                )
                for in_dim, out_dim in zip(embed_in_dims, embed_out_dims)
            ]
        )
        self.register_buffer(
            "embed_bounds",
            torch.tensor(list(embed_in_dims), dtype=torch.long),
        )
        self.output_dim = self.indicator_width + sum(embed_out_dims) + num_continuous

    @property
    def input_dim(self) -> int:
        return self.indicator_width + self.num_embed + self.num_continuous

    def forward(self, net: Tensor) -> Tensor:
        columns: List[Tensor] = []
        if self.indicator_width > 0:
            columns.append(net[..., : self.indicator_width])
        embed_start = self.indicator_width
        if self.num_embed > 0:
            embed_end = embed_start + self.num_embed
            ids = _to_ids(net[..., embed_start:embed_end])
            ids = impute_oob(ids, self.embed_bounds, "embed columns")
            for i, embedding in enumerate(self.embeddings):
                columns.append(embedding(ids[..., i]))
        if self.num_continuous > 0:
            continuous_start = embed_start + self.num_embed
            continuous_end = continuous_start + self.num_continuous
            columns.append(net[..., continuous_start:continuous_end])
        return torch.cat(columns, dim=-1)


@register_ml_module("deep")
class Deep(nn.Module):
    def __init__(
        self,
        indicator_dims: Sequence[int],
        embed_in_dims: Sequence[int],
        embed_out_dims: Sequence[int],
        num_continuous: int,
        num_classes: int,
        hidden_units: Optional[List[int]] = None,
        *,
        activation: str = "ReLU",
        batch_norm: bool = False,
        dropout: float = 0.0,
        embedding_std: float = DEFAULT_EMBEDDING_STD,
    ):
        super().__init__()
        self.columns = DeepColumns(
            indicator_dims,
            embed_in_dims,
            embed_out_dims,
            num_continuous,
            embedding_std=embedding_std,
        )
        self.fcnn = FCNN(
            self.columns.output_dim,
            num_classes,
            hidden_units,
            activation=activation,
            batch_norm=batch_norm,
            dropout=dropout,
        )

    def forward(self, net: Tensor) -> Tensor:
        return self.fcnn(self.columns(net))


@register_ml_module("wnd")
class WideAndDeepNet(nn.Module):
    """
    Single tensor in, single tensor out.

    The input is laid out as `[wide ids | indicator | embed ids | continuous]`.
    The wide part reads the first `len(wide_dims)` columns and the deep part
    reads the rest. Scores of the enabled parts are summed and normalized with
    `log_softmax`. A disabled part is not built at all.
    """

    def __init__(
        self,
        num_classes: int,
        wide_dims: Sequence[int],
        indicator_dims: Sequence[int],
        embed_in_dims: Sequence[int],
        embed_out_dims: Sequence[int],
        num_continuous: int,
        hidden_units: Optional[List[int]] = None,
        *,
        use_wide: bool = True,
        use_deep: bool = True,
        activation: str = "ReLU",
        batch_norm: bool = False,
        dropout: float = 0.0,
        embedding_std: float = DEFAULT_EMBEDDING_STD,
    ):
        super().__init__()
        if not use_wide and not use_deep:
            raise ValueError("at least one of the wide part & deep part should be used")
        self.num_classes = num_classes
        self.wide_dim = len(wide_dims)
        self.deep_dim = sum(indicator_dims) + len(embed_in_dims) + num_continuous
        self.wide: Optional[Wide] = None
        self.deep: Optional[Deep] = None
        if use_wide:
            self.wide = Wide(wide_dims, num_classes)
        if use_deep:
            self.deep = Deep(
                indicator_dims,
                embed_in_dims,
                embed_out_dims,
                num_continuous,
                num_classes,
                hidden_units,
                activation=activation,
                batch_norm=batch_norm,
                dropout=dropout,
                embedding_std=embedding_std,
            )

    @property
    def input_dim(self) -> int:
        return self.wide_dim + self.deep_dim

    def forward(self, net: Tensor) -> Tensor:
        if net.shape[-1] != self.input_dim:
            raise ValueError(
                f"input dim ({net.shape[-1]}) does not match "
                f"the expected dim ({self.input_dim})"
            )
        scores: Optional[Tensor] = None
        if self.wide is not None:
            scores = self.wide(net[..., : self.wide_dim])
        if self.deep is not None:
            deep_scores = self.deep(net[..., self.wide_dim :])
            scores = deep_scores if scores is None else scores + deep_scores
        assert scores is not None
        return F.log_softmax(scores, dim=-1)


__all__ = [
    "Wide",
    "DeepColumns",
    "Deep",
    "WideAndDeepNet",
]
