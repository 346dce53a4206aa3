import torch

from enum import Enum
from torch import device
from typing import Any
from typing import Dict
from typing import List
from typing import Type
from typing import Union
from typing import Optional
from typing import Sequence
from typing import NamedTuple
from pathlib import Path
from dataclasses import field
from dataclasses import dataclass
from cftool.misc import ISerializableDataClass

from .constants import SUPPORTED_DTYPES
from .constants import DEFAULT_NUM_CLASSES
from .constants import DEFAULT_LABEL_COLUMN
from .constants import DEFAULT_EMBEDDING_STD
from .constants import DEFAULT_HIDDEN_LAYERS


# types


param_type = Union[torch.Tensor, torch.nn.Parameter]
device_type = Optional[Union[int, str, device]]
dims_type = Sequence[int]

TPath = Union[str, Path]


# collections


recommender_configs: Dict[str, Type["RecommenderConfig"]] = {}

_dims_fields = (
    "wide_base_dims",
    "wide_cross_dims",
    "indicator_dims",
    "embed_in_dims",
    "embed_out_dims",
)


# columns


def _check_size(name: str, cols: Sequence[Any], *others: Sequence[Any]) -> None:
    for other in others:
        if len(cols) != len(other):
            raise ValueError(
                f"size of {name} should match, but got {len(cols)} columns "
                f"and {len(other)} dimensions"
            )


@dataclass(frozen=True)
class ColumnFeatureInfo:
    """
    The same data information shared by the `WideAndDeep` model and its feature
    generation part (see `cfrec.data.FeatureAssembler`).

    Properties
    ----------
    wide_base_cols (List[str]) : columns fed into the wide part.
    wide_base_dims (List[int]) : number of different values of each wide base column.
    wide_cross_cols (List[str]) : crossed columns fed into the wide part.
    wide_cross_dims (List[int]) : number of buckets of each crossed column.
    indicator_cols (List[str]) : columns fed into the deep part as multi-hot vectors.
    indicator_dims (List[int]) : width of each multi-hot vector.
    embed_cols (List[str]) : columns fed into the deep part as embeddings.
    embed_in_dims (List[int]) : number of different values of each embed column.
    embed_out_dims (List[int]) : dimension of each embedding.
    continuous_cols (List[str]) : columns treated as continuous values in the deep part.
    label (str) : name of the label column.

    """

    wide_base_cols: List[str] = field(default_factory=list)
    wide_base_dims: List[int] = field(default_factory=list)
    wide_cross_cols: List[str] = field(default_factory=list)
    wide_cross_dims: List[int] = field(default_factory=list)
    indicator_cols: List[str] = field(default_factory=list)
    indicator_dims: List[int] = field(default_factory=list)
    embed_cols: List[str] = field(default_factory=list)
    embed_in_dims: List[int] = field(default_factory=list)
    embed_out_dims: List[int] = field(default_factory=list)
    continuous_cols: List[str] = field(default_factory=list)
    label: str = DEFAULT_LABEL_COLUMN

    def check(self) -> None:
        _check_size("wideBaseColumns", self.wide_base_cols, self.wide_base_dims)
        _check_size("wideCrossColumns", self.wide_cross_cols, self.wide_cross_dims)
        _check_size("indicatorColumns", self.indicator_cols, self.indicator_dims)
        _check_size(
            "embeddingColumns",
            self.embed_cols,
            self.embed_in_dims,
            self.embed_out_dims,
        )

    @property
    def wide_dims(self) -> List[int]:
        return list(self.wide_base_dims) + list(self.wide_cross_dims)

    @property
    def num_wide(self) -> int:
        return len(self.wide_base_cols) + len(self.wide_cross_cols)

    @property
    def indicator_width(self) -> int:
        return sum(self.indicator_dims)

    @property
    def num_embed(self) -> int:
        return len(self.embed_cols)

    @property
    def num_continuous(self) -> int:
        return len(self.continuous_cols)

    @property
    def wide_width(self) -> int:
        return self.num_wide

    @property
    def deep_width(self) -> int:
        return self.indicator_width + self.num_embed + self.num_continuous

    @property
    def deep_feature_dim(self) -> int:
        return self.indicator_width + sum(self.embed_out_dims) + self.num_continuous

    @property
    def input_dim(self) -> int:
        return self.wide_width + self.deep_width

    @property
    def feature_columns(self) -> List[str]:
        return (
            list(self.wide_base_cols)
            + list(self.wide_cross_cols)
            + list(self.indicator_cols)
            + list(self.embed_cols)
            + list(self.continuous_cols)
        )


class ModelTypes(str, Enum):
    WIDE_N_DEEP = "wide_n_deep"
    WIDE = "wide"
    DEEP = "deep"

    @property
    def use_wide(self) -> bool:
        return self != ModelTypes.DEEP

    @property
    def use_deep(self) -> bool:
        return self != ModelTypes.WIDE

    @classmethod
    def parse(cls, model_type: Union[str, "ModelTypes"]) -> "ModelTypes":
        try:
            return cls(model_type)
        except ValueError:
            supported = ", ".join(f"'{t.value}'" for t in cls)
            raise ValueError(
                f"unknown type '{model_type}' occurred, "
                f"currently only {supported} are supported"
            )


# configs


@dataclass
class RecommenderConfig(ISerializableDataClass):
    model: str = ""
    dtype: str = "float32"
    seed: Optional[int] = None

    @classmethod
    def d(cls) -> Dict[str, Type["RecommenderConfig"]]:
        return recommender_configs

    def sanity_check(self) -> None:
        if not self.model:
            raise ValueError("`model` should be provided")
        if self.dtype not in SUPPORTED_DTYPES:
            raise ValueError(
                f"unsupported dtype '{self.dtype}' occurred, "
                f"only {SUPPORTED_DTYPES} are supported"
            )
        self.dtype = str(self.dtype)
        if self.seed is not None:
            self.seed = int(self.seed)


@dataclass
@RecommenderConfig.register("wide_and_deep")
class WideAndDeepConfig(RecommenderConfig):
    """
    Configuration of the `WideAndDeep` recommender.

    * `model_type` : "wide", "deep" or "wide_n_deep".
    * `num_classes` : number of classes, positive integer.
    * `*_dims` / `continuous_cols` : copied from a `ColumnFeatureInfo`.
    * `hidden_layers` : units of the hidden layers of the deep part.
    * `activation` / `batch_norm` / `dropout` : settings of each hidden layer.
    * `embedding_std` : std of the normal distribution used to initialize embeddings.
    """

    model: str = "wide_and_deep"
    model_type: str = ModelTypes.WIDE_N_DEEP.value
    num_classes: int = DEFAULT_NUM_CLASSES
    wide_base_dims: List[int] = field(default_factory=list)
    wide_cross_dims: List[int] = field(default_factory=list)
    indicator_dims: List[int] = field(default_factory=list)
    embed_in_dims: List[int] = field(default_factory=list)
    embed_out_dims: List[int] = field(default_factory=list)
    continuous_cols: List[str] = field(default_factory=list)
    hidden_layers: List[int] = field(
        default_factory=lambda: list(DEFAULT_HIDDEN_LAYERS)
    )
    activation: str = "ReLU"
    batch_norm: bool = False
    dropout: float = 0.0
    embedding_std: float = DEFAULT_EMBEDDING_STD

    @classmethod
    def from_column_info(
        cls,
        model_type: str,
        num_classes: int,
        column_info: ColumnFeatureInfo,
        hidden_layers: dims_type = DEFAULT_HIDDEN_LAYERS,
        **kwargs: Any,
    ) -> "WideAndDeepConfig":
        column_info.check()
        return cls(
            model_type=model_type,
            num_classes=num_classes,
            wide_base_dims=list(column_info.wide_base_dims),
            wide_cross_dims=list(column_info.wide_cross_dims),
            indicator_dims=list(column_info.indicator_dims),
            embed_in_dims=list(column_info.embed_in_dims),
            embed_out_dims=list(column_info.embed_out_dims),
            continuous_cols=list(column_info.continuous_cols),
            hidden_layers=list(hidden_layers),
            **kwargs,
        )

    @property
    def wide_dims(self) -> List[int]:
        return list(self.wide_base_dims) + list(self.wide_cross_dims)

    @property
    def num_wide(self) -> int:
        return len(self.wide_dims)

    @property
    def indicator_width(self) -> int:
        return sum(self.indicator_dims)

    @property
    def deep_feature_dim(self) -> int:
        return self.indicator_width + sum(self.embed_out_dims) + len(self.continuous_cols)

    @property
    def input_dim(self) -> int:
        deep_width = self.indicator_width + len(self.embed_in_dims)
        return self.num_wide + deep_width + len(self.continuous_cols)

    def sanity_check(self) -> None:
        super().sanity_check()
        # fields are persisted with `torch.save` and must stay builtin
        model_type = ModelTypes.parse(self.model_type)
        self.model_type = model_type.value
        self.num_classes = int(self.num_classes)
        for name in _dims_fields:
            setattr(self, name, [int(dim) for dim in getattr(self, name)])
        self.continuous_cols = [str(col) for col in self.continuous_cols]
        self.hidden_layers = [int(units) for units in self.hidden_layers]
        self.activation = str(self.activation)
        self.batch_norm = bool(self.batch_norm)
        self.dropout = float(self.dropout)
        self.embedding_std = float(self.embedding_std)
        if self.num_classes <= 0:
            raise ValueError(f"`num_classes` should be positive, got {self.num_classes}")
        if len(self.embed_in_dims) != len(self.embed_out_dims):
            raise ValueError("size of embeddingColumns should match")
        for name in _dims_fields:
            dims = getattr(self, name)
            if any(dim <= 0 for dim in dims):
                raise ValueError(f"every dim of `{name}` should be positive, got {dims}")
        if model_type.use_wide and not self.wide_dims:
            raise ValueError(f"wide columns are required by '{model_type.value}'")
        if model_type.use_deep:
            if not self.hidden_layers:
                raise ValueError("at least one hidden layer is required")
            if any(units <= 0 for units in self.hidden_layers):
                raise ValueError(
                    f"units of hidden layers should be positive, "
                    f"got {self.hidden_layers}"
                )
            if self.deep_feature_dim <= 0:
                raise ValueError(f"deep columns are required by '{model_type.value}'")


# predictions


class UserItemPrediction(NamedTuple):
    user_id: int
    item_id: int
    prediction: int
    probability: float


def sort_predictions(predictions: List[UserItemPrediction]) -> List[UserItemPrediction]:
    return sorted(
        predictions,
        key=lambda p: (p.prediction, p.probability),
        reverse=True,
    )


def group_predictions(
    predictions: List[UserItemPrediction],
    key: str,
    max_num: int,
) -> Dict[int, List[UserItemPrediction]]:
    groups: Dict[int, List[UserItemPrediction]] = {}
    for prediction in predictions:
        groups.setdefault(getattr(prediction, key), []).append(prediction)
    return {k: sort_predictions(v)[:max_num] for k, v in groups.items()}


__all__ = [
    "param_type",
    "device_type",
    "dims_type",
    "TPath",
    "ColumnFeatureInfo",
    "ModelTypes",
    "RecommenderConfig",
    "WideAndDeepConfig",
    "UserItemPrediction",
    "sort_predictions",
    "group_predictions",
]
