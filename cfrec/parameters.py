from typing import Any
from typing import Dict
from pathlib import Path
from cftool.misc import OPTBase

from .constants import ENV_KEY
from .constants import DEFAULT_PREDICT_BATCH_SIZE


class OPTClass(OPTBase):
    cache_dir: Path
    # forwarded to `fsspec` when reading / writing remote models
    # > e.g. {"s3a": {"key": ..., "secret": ..., "client_kwargs": {"endpoint_url": ...}}}
    storage_options: Dict[str, Any]
    predict_batch_size: int

    @property
    def env_key(self) -> str:
        return ENV_KEY

    @property
    def defaults(self) -> Dict[str, Any]:
        user_dir = Path.home()
        return dict(
            cache_dir=user_dir / ".cache" / "carefree-recommend",
            storage_options={},
            predict_batch_size=DEFAULT_PREDICT_BATCH_SIZE,
        )

    def update_from_env(self) -> None:
        super().update_from_env()
        self._opt["cache_dir"] = Path(self._opt["cache_dir"])


OPT = OPTClass()


__all__ = [
    "OPT",
]
