import os
import shutil
import torch
import fsspec
import random
import hashlib

import numpy as np
import torch.nn as nn

from torch import Tensor
from typing import Any
from typing import IO
from typing import Dict
from typing import Tuple
from typing import Union
from typing import Callable
from typing import Iterator
from typing import Optional
from typing import ContextManager
from pathlib import Path
from contextlib import contextmanager
from cftool.misc import print_info
from cftool.misc import print_warning
from cftool.misc import shallow_copy_dict
from cftool.types import tensor_dict_type
from safetensors.torch import load_file

from .schema import TPath
from .schema import param_type
from .schema import device_type
from .constants import SUPPORTED_DTYPES
from .parameters import OPT


# general


min_seed_value = np.iinfo(np.uint32).min
max_seed_value = np.iinfo(np.uint32).max


def new_seed() -> int:
    return random.randint(min_seed_value, max_seed_value)


def seed_everything(seed: int) -> int:
    if not min_seed_value <= seed <= max_seed_value:
        msg = f"{seed} is not in bounds, numpy accepts from {min_seed_value} to {max_seed_value}"
        print_warning(msg)
        seed = new_seed()

    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)

    return seed


# storage


REMOTE_PREFIXES = (
    "memory://",
    "hdfs://",
    "s3://",
    "s3a://",
    "s3n://",
    "gs://",
    "http://",
    "https://",
)


def is_remote(path: TPath) -> bool:
    return str(path).startswith(REMOTE_PREFIXES)


def _protocol(path: str) -> str:
    return path.split("://", 1)[0]


def open_file(path: TPath, mode: str = "rb") -> ContextManager[IO]:
    path = str(path)
    if not is_remote(path):
        if "w" in mode:
            folder = os.path.dirname(os.path.abspath(path))
            os.makedirs(folder, exist_ok=True)
        return open(path, mode)
    storage_options = OPT.storage_options.get(_protocol(path), {})
    return fsspec.open(path, mode, **storage_options)


def _remote_fs(path: str) -> Tuple[fsspec.AbstractFileSystem, str]:
    storage_options = OPT.storage_options.get(_protocol(path), {})
    return fsspec.core.url_to_fs(path, **storage_options)


def exists(path: TPath) -> bool:
    path = str(path)
    if not is_remote(path):
        return os.path.exists(path)
    fs, fs_path = _remote_fs(path)
    return fs.exists(fs_path)


def remove(path: TPath) -> None:
    path = str(path)
    if not is_remote(path):
        os.remove(path)
    else:
        fs, fs_path = _remote_fs(path)
        fs.rm(fs_path)


def fetch(path: TPath) -> Path:
    """
    Make `path` available on the local file system. Remote files are copied into
    `OPT.cache_dir` (keyed by the sha256 of their url) and the local copy is returned.
    """

    if not is_remote(path):
        return Path(path)
    path = str(path)
    url_hash = hashlib.sha256(path.encode("utf-8")).hexdigest()
    folder = OPT.cache_dir / "remote"
    folder.mkdir(parents=True, exist_ok=True)
    local_path = folder / f"{url_hash}_{os.path.basename(path)}"
    print_info(f"fetching '{path}' to '{local_path}'")
    with open_file(path, "rb") as src, local_path.open("wb") as dst:
        shutil.copyfileobj(src, dst)
    return local_path


def get_tensors(inp: Union[TPath, tensor_dict_type]) -> tensor_dict_type:
    if isinstance(inp, Path):
        inp = str(inp)
    if isinstance(inp, str):
        if is_remote(inp):
            inp = str(fetch(inp))
        if inp.endswith(".safetensors"):
            inp = load_file(inp)
        else:
            inp = torch.load(inp, map_location="cpu")
    if "state_dict" in inp:
        inp = inp["state_dict"]
    return shallow_copy_dict(inp)


# torch


def to_torch_dtype(dtype: Union[str, torch.dtype]) -> torch.dtype:
    if isinstance(dtype, torch.dtype):
        return dtype
    if dtype not in SUPPORTED_DTYPES:
        msg = f"unsupported dtype '{dtype}' occurred, only {SUPPORTED_DTYPES} are supported"
        raise ValueError(msg)
    return getattr(torch, dtype)


def get_dtype(m: nn.Module) -> torch.dtype:
    params = list(m.parameters())
    return torch.float32 if not params else params[0].dtype


def get_device(m: nn.Module) -> torch.device:
    params = list(m.parameters())
    return torch.device("cpu") if not params else params[0].device


def get_torch_device(device: device_type) -> torch.device:
    if device is None:
        return torch.device("cpu")
    if isinstance(device, (int, str)):
        try:
            device = int(device)
        except (TypeError, ValueError):
            pass
        finally:
            device = torch.device(device)
    return device


def num_params(m: nn.Module) -> int:
    return sum(p.numel() for p in m.parameters())


def impute_oob(ids: Tensor, bounds: Tensor, name: str) -> Tensor:
    """
    Replace the ids which fall outside of `[0, bounds)` with `0`.

    `ids` is a `long` tensor shaped `[batch, num_columns]`, `bounds` holds the
    number of different values of each column.
    """

    oob_mask = (ids < 0) | (ids >= bounds)
    if torch.any(oob_mask):
        print_warning(
            f"out of bound occurred in {name}, "
            f"ratio : {torch.mean(oob_mask.to(torch.float32)).item():8.6f}"
        )
        ids = ids.masked_fill(oob_mask, 0)
    return ids


@contextmanager
def eval_context(module: nn.Module, *, use_inference: bool = True) -> Iterator[None]:
    """
    Switch `module` to eval mode (and inference mode by default) and restore its
    previous training flag afterwards.
    """

    training = module.training
    module.eval()
    try:
        with torch.inference_mode(use_inference):
            yield
    finally:
        module.train(training)


initializer_fn_type = Callable[["Initializer", param_type], None]


class Initializer:
    """
    Initializes parameters in place with a registered method. `config` holds the
    arguments of the method (`gain` for `xavier_normal`, `mean` & `std` for `normal`).

    Examples
    --------
    >>> embedding = nn.Parameter(torch.empty(10, 4))
    >>> Initializer({"std": 0.1}).initialize(embedding, "normal")

    """

    initializers: Dict[str, initializer_fn_type] = {}

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    @classmethod
    def register(cls, name: str) -> Callable[[initializer_fn_type], initializer_fn_type]:
        def _register(fn: initializer_fn_type) -> initializer_fn_type:
            if name in cls.initializers:
                print_warning(f"'{name}' initializer is already defined")
            else:
                cls.initializers[name] = fn
            return fn

        return _register

    def initialize(self, param: param_type, method: str) -> None:
        fn = self.initializers.get(method)
        if fn is None:
            raise ValueError(
                f"unrecognized initializer '{method}' occurred, "
                f"available initializers are {sorted(self.initializers)}"
            )
        with torch.no_grad():
            fn(self, param)


@Initializer.register("zeros")
def _zeros(initializer: Initializer, param: param_type) -> None:
    param.data.zero_()


@Initializer.register("normal")
def _normal(initializer: Initializer, param: param_type) -> None:
    mean = initializer.config.get("mean", 0.0)
    std = initializer.config.get("std", 1.0)
    param.data.normal_(mean, std)


@Initializer.register("xavier_normal")
def _xavier_normal(initializer: Initializer, param: param_type) -> None:
    nn.init.xavier_normal_(param.data, initializer.config.get("gain", 1.0))


__all__ = [
    "new_seed",
    "seed_everything",
    "is_remote",
    "open_file",
    "exists",
    "remove",
    "fetch",
    "get_tensors",
    "to_torch_dtype",
    "get_dtype",
    "get_device",
    "get_torch_device",
    "num_params",
    "impute_oob",
    "eval_context",
    "Initializer",
]
