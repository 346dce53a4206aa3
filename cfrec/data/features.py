import hashlib

import numpy as np

from typing import Any
from typing import Dict
from typing import List
from typing import Tuple
from typing import Sequence
from cftool.misc import print_warning
from cftool.types import np_dict_type

from ..schema import ColumnFeatureInfo


def bucketize(values: np.ndarray, boundaries: Sequence[float]) -> np.ndarray:
    """
    Map continuous `values` to bucket ids, `len(boundaries) + 1` buckets in total.

    Bucket `i` holds the values in `[boundaries[i - 1], boundaries[i])`.
    """

    boundaries = np.asarray(boundaries)
    if np.any(np.diff(boundaries) <= 0):
        raise ValueError("`boundaries` should be strictly increasing")
    return np.searchsorted(boundaries, np.asarray(values), side="right")


def categorical_from_vocab(values: np.ndarray, vocab: Sequence[Any]) -> np.ndarray:
    """
    Map each value to its index in `vocab` plus one, unknown values are mapped to `0`.
    """

    mapping = {v: i + 1 for i, v in enumerate(vocab)}
    return np.array([mapping.get(v, 0) for v in np.asarray(values).tolist()], np.int64)


def _stable_hash(value: str) -> int:
    return int(hashlib.sha256(value.encode("utf-8")).hexdigest()[:15], 16)


def hash_bucket(values: np.ndarray, bucket_size: int) -> np.ndarray:
    if bucket_size <= 0:
        raise ValueError(f"`bucket_size` should be positive, got {bucket_size}")
    hashed = [_stable_hash(str(v)) % bucket_size for v in np.asarray(values).tolist()]
    return np.array(hashed, np.int64)


def cross_columns(columns: Sequence[np.ndarray], bucket_size: int) -> np.ndarray:
    """
    Cross several categorical columns into one, hashed into `bucket_size` buckets.

    Examples
    --------
    >>> cross_columns([np.array(["a", "b"]), np.array([1, 2])], 100)

    """

    if len(columns) < 2:
        raise ValueError("at least two columns are required to be crossed")
    lengths = {len(column) for column in columns}
    if len(lengths) != 1:
        raise ValueError(f"lengths of the crossed columns should match, got {lengths}")
    rows = zip(*[np.asarray(column).tolist() for column in columns])
    joined = np.array(["_".join(map(str, row)) for row in rows], dtype=object)
    return hash_bucket(joined, bucket_size)


class FeatureAssembler:
    """
    Assembles raw columns into the single input array consumed by `WideAndDeep`.

    The array is laid out as `[wide ids | indicator | embed ids | continuous]`:
    * wide base / wide cross columns hold one id per column.
    * indicator columns are either ids (expanded to one-hot vectors) or 2d
    multi-hot arrays of width `indicator_dims[i]`.
    * embed columns hold one id per column.
    * continuous columns are copied as is.
    """

    def __init__(self, column_info: ColumnFeatureInfo):
        column_info.check()
        self.column_info = column_info

    @property
    def input_dim(self) -> int:
        return self.column_info.input_dim

    def _fetch(self, data: np_dict_type, name: str) -> np.ndarray:
        column = data.get(name)
        if column is None:
            raise ValueError(f"column '{name}' is missing")
        return np.asarray(column)

    def _ids(self, data: np_dict_type, cols: List[str], dims: List[int]) -> List[np.ndarray]:
        ids_list = []
        for name, dim in zip(cols, dims):
            ids = self._fetch(data, name).astype(np.int64)
            oob_mask = (ids < 0) | (ids >= dim)
            if np.any(oob_mask):
                print_warning(
                    f"out of bound occurred in column '{name}', "
                    f"ratio : {oob_mask.mean():8.6f}"
                )
                ids = np.where(oob_mask, 0, ids)
            ids_list.append(ids[..., None].astype(np.float64))
        return ids_list

    def _indicator(self, data: np_dict_type) -> List[np.ndarray]:
        info = self.column_info
        encoded = []
        for name, dim in zip(info.indicator_cols, info.indicator_dims):
            column = self._fetch(data, name)
            if column.ndim == 2:
                if column.shape[1] != dim:
                    raise ValueError(
                        f"multi-hot column '{name}' should have {dim} columns, "
                        f"got {column.shape[1]}"
                    )
                encoded.append(column.astype(np.float64))
                continue
            ids = column.astype(np.int64)
            if np.any((ids < 0) | (ids >= dim)):
                raise ValueError(f"ids of indicator column '{name}' should be in [0, {dim})")
            encoded.append(np.eye(dim, dtype=np.float64)[ids])
        return encoded

    def transform(self, data: np_dict_type) -> np.ndarray:
        info = self.column_info
        lengths = {len(self._fetch(data, name)) for name in info.feature_columns}
        if len(lengths) > 1:
            raise ValueError(f"lengths of the feature columns should match, got {lengths}")
        blocks: List[np.ndarray] = []
        blocks.extend(self._ids(data, info.wide_base_cols, info.wide_base_dims))
        blocks.extend(self._ids(data, info.wide_cross_cols, info.wide_cross_dims))
        blocks.extend(self._indicator(data))
        blocks.extend(self._ids(data, info.embed_cols, info.embed_in_dims))
        for name in info.continuous_cols:
            blocks.append(self._fetch(data, name).astype(np.float64)[..., None])
        if not blocks:
            raise ValueError("no feature columns are defined in `column_info`")
        return np.concatenate(blocks, axis=1)

    def get_labels(self, data: np_dict_type) -> np.ndarray:
        return self._fetch(data, self.column_info.label).astype(np.int64)

    def transform_xy(self, data: np_dict_type) -> Tuple[np.ndarray, np.ndarray]:
        return self.transform(data), self.get_labels(data)

    def split(self, x: np.ndarray) -> Dict[str, np.ndarray]:
        """Inverse of the layout : slices `x` into its wide / indicator / embed / continuous parts."""

        info = self.column_info
        if x.shape[-1] != info.input_dim:
            raise ValueError(
                f"input dim ({x.shape[-1]}) does not match "
                f"the expected dim ({info.input_dim})"
            )
        bounds = np.cumsum(
            [0, info.num_wide, info.indicator_width, info.num_embed, info.num_continuous]
        )
        keys = ["wide", "indicator", "embed", "continuous"]
        return {k: x[..., bounds[i] : bounds[i + 1]] for i, k in enumerate(keys)}


__all__ = [
    "bucketize",
    "categorical_from_vocab",
    "hash_bucket",
    "cross_columns",
    "FeatureAssembler",
]
