from typing import Any
from typing import Optional

from .base import IRecommender
from ..schema import dims_type
from ..schema import ModelTypes
from ..schema import ColumnFeatureInfo
from ..schema import WideAndDeepConfig
from ..schema import RecommenderConfig
from ..modules import build_ml_module
from ..constants import DEFAULT_HIDDEN_LAYERS


@IRecommender.register("wide_and_deep")
class WideAndDeep(IRecommender):
    """
    The Wide and Deep model used for recommendation.

    * wide part : a sparse lookup over the wide base & wide cross columns,
    initialized with zeros.
    * deep part : indicator columns, embeddings (initialized from N(0, 0.1)) and
    continuous columns are concatenated and fed into fully connected layers
    (`hidden_layers`, with ReLU in between), ending with a projection to
    `num_classes`.

    Depending on `model_type`, the two parts are summed ("wide_n_deep") or used
    alone ("wide" / "deep"), followed by a `log_softmax`.

    Examples
    --------
    >>> info = ColumnFeatureInfo(
    >>>     wide_base_cols=["occupation"],
    >>>     wide_base_dims=[21],
    >>>     embed_cols=["user_id"],
    >>>     embed_in_dims=[6041],
    >>>     embed_out_dims=[64],
    >>>     continuous_cols=["age"],
    >>> )
    >>> m = WideAndDeep.make_with("wide_n_deep", 5, info)

    """

    config: WideAndDeepConfig

    def build(self, config: RecommenderConfig) -> None:
        if not isinstance(config, WideAndDeepConfig):
            raise ValueError(f"`WideAndDeepConfig` is expected, got {config}")
        model_type = ModelTypes.parse(config.model_type)
        self.model_type = model_type
        self.m = build_ml_module(
            "wnd",
            num_classes=config.num_classes,
            wide_dims=config.wide_dims,
            indicator_dims=config.indicator_dims,
            embed_in_dims=config.embed_in_dims,
            embed_out_dims=config.embed_out_dims,
            num_continuous=len(config.continuous_cols),
            hidden_units=list(config.hidden_layers),
            use_wide=model_type.use_wide,
            use_deep=model_type.use_deep,
            activation=config.activation,
            batch_norm=config.batch_norm,
            dropout=config.dropout,
            embedding_std=config.embedding_std,
        )

    @property
    def num_classes(self) -> int:
        return self.config.num_classes

    @property
    def input_dim(self) -> int:
        return self.config.input_dim

    @classmethod
    def make_with(
        cls,
        model_type: str = ModelTypes.WIDE_N_DEEP.value,
        num_classes: Optional[int] = None,
        column_info: Optional[ColumnFeatureInfo] = None,
        hidden_layers: dims_type = DEFAULT_HIDDEN_LAYERS,
        *,
        dtype: str = "float32",
        seed: Optional[int] = None,
        **kwargs: Any,
    ) -> "WideAndDeep":
        """
        The factory method to create a `WideAndDeep` instance.

        Parameters
        ----------
        model_type (str) : "wide", "deep" or "wide_n_deep".
        num_classes (int) : the number of classes, positive integer.
        column_info (ColumnFeatureInfo) : information of the feature columns.
        hidden_layers (List[int]) : units of the hidden layers of the deep part.
        dtype (str) : "float32" or "float64".
        seed (int) : seed of the parameter initialization, random if not provided.
        kwargs : other fields of `WideAndDeepConfig`.

        """

        if num_classes is None:
            raise ValueError("`num_classes` should be provided")
        if column_info is None:
            raise ValueError("`column_info` should be provided")
        config = WideAndDeepConfig.from_column_info(
            model_type,
            num_classes,
            column_info,
            hidden_layers,
            dtype=dtype,
            seed=seed,
            **kwargs,
        )
        return cls.from_config(config)


def wide_and_deep(
    model_type: str = ModelTypes.WIDE_N_DEEP.value,
    num_classes: Optional[int] = None,
    column_info: Optional[ColumnFeatureInfo] = None,
    hidden_layers: dims_type = DEFAULT_HIDDEN_LAYERS,
    **kwargs: Any,
) -> WideAndDeep:
    return WideAndDeep.make_with(
        model_type,
        num_classes,
        column_info,
        hidden_layers,
        **kwargs,
    )


__all__ = [
    "WideAndDeep",
    "wide_and_deep",
]
