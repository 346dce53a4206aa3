import io
import torch

import numpy as np
import torch.nn as nn

from abc import abstractmethod
from abc import ABCMeta
from torch import device
from torch import Tensor
from typing import Any
from typing import Dict
from typing import List
from typing import Type
from typing import Tuple
from typing import Union
from typing import TypeVar
from typing import Iterator
from typing import Optional
from typing import ContextManager
from cftool.misc import print_info
from cftool.misc import WithRegister
from cftool.types import tensor_dict_type
from safetensors.torch import save as save_safetensors

from ..schema import TPath
from ..schema import device_type
from ..schema import RecommenderConfig
from ..schema import recommender_configs
from ..schema import UserItemPrediction
from ..schema import group_predictions
from ..toolkit import exists
from ..toolkit import remove
from ..toolkit import open_file
from ..toolkit import get_device
from ..toolkit import get_tensors
from ..toolkit import get_dtype
from ..toolkit import num_params
from ..toolkit import eval_context
from ..toolkit import to_torch_dtype
from ..toolkit import get_torch_device
from ..constants import CONFIG_KEY
from ..constants import STATES_KEY
from ..parameters import OPT


recommenders: Dict[str, Type["IRecommender"]] = {}

TRecommender = TypeVar("TRecommender", bound="IRecommender")
arr_like = Union[np.ndarray, Tensor]


def _to_numpy(arr: arr_like) -> np.ndarray:
    if isinstance(arr, Tensor):
        return arr.detach().cpu().numpy()
    return np.asarray(arr)


class IRecommender(WithRegister["IRecommender"], metaclass=ABCMeta):
    """
    Holds a `torch.nn.Module` (`m`) together with the config it was built from.

    The module takes ONE float tensor (`[batch, input_dim]`) and returns ONE
    tensor of log probabilities (`[batch, num_classes]`).
    """

    d = recommenders

    m: nn.Module
    config: RecommenderConfig

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.m})"

    __repr__ = __str__

    # abstract

    @abstractmethod
    def build(self, config: RecommenderConfig) -> None:
        pass

    # construction

    @classmethod
    def from_config(cls: Type[TRecommender], config: RecommenderConfig) -> TRecommender:
        config.sanity_check()
        self = cls.make(config.model, {})
        self.config = config.copy()
        seed = config.seed
        with torch.random.fork_rng(devices=[], enabled=seed is not None):
            if seed is not None:
                torch.manual_seed(seed)
            self.build(self.config)
        self.m.to(to_torch_dtype(config.dtype))
        print_info(
            f"{self.__class__.__name__} ({self.config.model}) is built "
            f"with {self.num_params} parameters"
        )
        return self

    # shortcuts

    def __call__(self, net: Tensor) -> Tensor:
        return self.forward(net)

    def forward(self, net: Tensor) -> Tensor:
        return self.m(net)

    def to(self: TRecommender, device: device_type) -> TRecommender:
        self.m.to(get_torch_device(device))
        return self

    def state_dict(self, **kwargs: Any) -> tensor_dict_type:
        return self.m.state_dict(**kwargs)

    def load_state_dict(self, d: tensor_dict_type, strict: bool = True) -> None:
        self.m.load_state_dict(d, strict)

    def parameters(self) -> Iterator[nn.Parameter]:
        return self.m.parameters()

    def named_parameters(self) -> Iterator[Tuple[str, nn.Parameter]]:
        return self.m.named_parameters()

    @property
    def num_params(self) -> int:
        return num_params(self.m)

    @property
    def device(self) -> device:
        return get_device(self.m)

    @property
    def dtype(self) -> torch.dtype:
        return get_dtype(self.m)

    def eval_context(self, **kwargs: Any) -> ContextManager:
        return eval_context(self.m, **kwargs)

    # persistence

    def save_model(
        self,
        path: TPath,
        weight_path: Optional[TPath] = None,
        *,
        over_write: bool = False,
    ) -> None:
        """
        Save the recommender.

        * If `weight_path` is not provided, the config and the weights are saved
        together into `path`.
        * Otherwise, only the config is saved into `path`, and the weights are
        saved into `weight_path` in the `safetensors` format.

        Local file system, HDFS ("hdfs://[host]:[port]/xxx") and Amazon S3
        ("s3a://bucket/xxx") are supported.
        """

        targets = [path] if weight_path is None else [path, weight_path]
        if not over_write:
            for target in targets:
                if exists(target):
                    raise FileExistsError(
                        f"'{target}' already exists, "
                        "set `over_write=True` to overwrite it"
                    )
        states = {k: v.detach().cpu().contiguous() for k, v in self.state_dict().items()}
        full: Dict[str, Any] = {CONFIG_KEY: self.config.to_pack().asdict()}
        if weight_path is None:
            full[STATES_KEY] = states
        buffer = io.BytesIO()
        torch.save(full, buffer)
        if weight_path is not None:
            with open_file(weight_path, "wb") as f:
                f.write(save_safetensors(states))
        try:
            with open_file(path, "wb") as f:
                f.write(buffer.getvalue())
        except Exception:
            # a weights file without its config cannot be loaded
            if weight_path is not None and exists(weight_path):
                remove(weight_path)
            raise
        if weight_path is None:
            print_info(f"{self.__class__.__name__} is saved to '{path}'")
        else:
            print_info(
                f"{self.__class__.__name__} is saved to '{path}' "
                f"(weights : '{weight_path}')"
            )

    @classmethod
    def load_model(
        cls: Type[TRecommender],
        path: TPath,
        weight_path: Optional[TPath] = None,
        *,
        strict: bool = True,
    ) -> TRecommender:
        loaded = load_model(path, weight_path, strict=strict)
        if not isinstance(loaded, cls):
            raise TypeError(
                f"'{path}' holds a `{loaded.__class__.__name__}`, "
                f"which is not a `{cls.__name__}`"
            )
        return loaded

    # predictions

    def predict(self, x: arr_like, *, batch_size: Optional[int] = None) -> Tensor:
        """Returns the log probabilities of `x`, computed batch by batch in eval mode."""

        if batch_size is None:
            batch_size = OPT.predict_batch_size
        if not isinstance(x, Tensor):
            x = torch.from_numpy(np.asarray(x))
        x = x.to(self.device, self.dtype)
        outputs = []
        with self.eval_context():
            for batch in torch.split(x, batch_size):
                outputs.append(self.forward(batch))
        return torch.cat(outputs, dim=0)

    def predict_classes(
        self,
        x: arr_like,
        *,
        batch_size: Optional[int] = None,
    ) -> Tensor:
        return self.predict(x, batch_size=batch_size).argmax(dim=-1)

    def predict_user_item_pair(
        self,
        user_ids: arr_like,
        item_ids: arr_like,
        x: arr_like,
        *,
        batch_size: Optional[int] = None,
    ) -> List[UserItemPrediction]:
        user_ids = _to_numpy(user_ids)
        item_ids = _to_numpy(item_ids)
        if not len(user_ids) == len(item_ids) == len(x):
            raise ValueError(
                "lengths of `user_ids`, `item_ids` and `x` should match, "
                f"got {len(user_ids)}, {len(item_ids)} and {len(x)}"
            )
        log_probabilities = self.predict(x, batch_size=batch_size)
        max_log_probabilities, classes = log_probabilities.max(dim=-1)
        probabilities = max_log_probabilities.exp().cpu().tolist()
        return [
            UserItemPrediction(int(user_id), int(item_id), int(c), float(p))
            for user_id, item_id, c, p in zip(
                user_ids.tolist(),
                item_ids.tolist(),
                classes.cpu().tolist(),
                probabilities,
            )
        ]

    def recommend_for_user(
        self,
        user_ids: arr_like,
        item_ids: arr_like,
        x: arr_like,
        max_items: int,
        *,
        batch_size: Optional[int] = None,
    ) -> Dict[int, List[UserItemPrediction]]:
        """Top `max_items` items of each user, ordered by (class, probability)."""

        pairs = self.predict_user_item_pair(user_ids, item_ids, x, batch_size=batch_size)
        return group_predictions(pairs, "user_id", max_items)

    def recommend_for_item(
        self,
        user_ids: arr_like,
        item_ids: arr_like,
        x: arr_like,
        max_users: int,
        *,
        batch_size: Optional[int] = None,
    ) -> Dict[int, List[UserItemPrediction]]:
        """Top `max_users` users of each item, ordered by (class, probability)."""

        pairs = self.predict_user_item_pair(user_ids, item_ids, x, batch_size=batch_size)
        return group_predictions(pairs, "item_id", max_users)


def load_model(
    path: TPath,
    weight_path: Optional[TPath] = None,
    *,
    strict: bool = True,
) -> IRecommender:
    """
    Load a recommender saved by `IRecommender.save_model`.

    Local file system, HDFS ("hdfs://[host]:[port]/xxx") and Amazon S3
    ("s3a://bucket/xxx") are supported.
    """

    full = get_tensors(path)
    if CONFIG_KEY not in full:
        raise ValueError(f"'{path}' does not hold a saved recommender")
    pack = full[CONFIG_KEY]
    config_type = pack.get("type")
    if config_type not in recommender_configs:
        raise ValueError(f"unrecognized config '{config_type}' found in '{path}'")
    config = RecommenderConfig.from_pack(pack)
    if not IRecommender.has(config.model):
        raise ValueError(f"unrecognized recommender '{config.model}' found in '{path}'")
    base = IRecommender.get(config.model)
    recommender = base.from_config(config)
    if weight_path is not None:
        states = get_tensors(weight_path)
    else:
        states = full.get(STATES_KEY)
        if states is None:
            raise ValueError(
                f"'{path}' only holds the config, "
                "`weight_path` should be provided"
            )
    recommender.load_state_dict(states, strict)
    print_info(f"{recommender.__class__.__name__} is loaded from '{path}'")
    return recommender


__all__ = [
    "recommenders",
    "IRecommender",
    "load_model",
]
