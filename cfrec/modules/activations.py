import torch.nn as nn
import torch.nn.functional as F

from typing import Any
from typing import Dict
from typing import Optional
from functools import partial
from torch.nn import Module

from .common import Lambda


def build_activation(
    name: Optional[str],
    config: Optional[Dict[str, Any]] = None,
) -> Module:
    """
    Activation between the hidden layers of the deep part.

    `name` is looked up in `torch.nn` first ("ReLU", "Tanh", ...), then in
    `torch.nn.functional`. "relu" is accepted as an alias of "ReLU".
    """

    if name is None:
        return nn.Identity()
    config = config or {}
    if name.lower() == "relu":
        name = "ReLU"
    nn_activation = getattr(nn, name, None)
    if isinstance(nn_activation, type) and issubclass(nn_activation, Module):
        return nn_activation(**config)
    func = getattr(F, name, None)
    if func is None:
        raise ValueError(f"unrecognized activation '{name}' occurred")
    return Lambda(partial(func, **config), name)


__all__ = [
    "build_activation",
]
