import os
import torch
import cfrec
import unittest
import tempfile

import numpy as np
import torch.nn as nn

from cfrec import OPT
from cfrec import ModelTypes
from cfrec import WideAndDeep
from cfrec import IRecommender
from cfrec import ColumnFeatureInfo
from cfrec import RecommenderConfig
from cfrec.toolkit import open_file
from pathlib import Path
from dataclasses import dataclass
from unittest.mock import patch
from safetensors.torch import load_file


@dataclass
@RecommenderConfig.register("toy")
class ToyConfig(RecommenderConfig):
    model: str = "toy"
    input_dim: int = 3
    num_classes: int = 2


@IRecommender.register("toy")
class ToyRecommender(IRecommender):
    def build(self, config: RecommenderConfig) -> None:
        assert isinstance(config, ToyConfig)
        self.m = nn.Sequential(
            nn.Linear(config.input_dim, config.num_classes),
            nn.LogSoftmax(dim=-1),
        )


def get_model(**kwargs: object) -> WideAndDeep:
    info = ColumnFeatureInfo(
        wide_base_cols=["a"],
        wide_base_dims=[10],
        wide_cross_cols=["a_b"],
        wide_cross_dims=[50],
        indicator_cols=["g"],
        indicator_dims=[3],
        embed_cols=["b"],
        embed_in_dims=[5],
        embed_out_dims=[4],
        continuous_cols=["c"],
    )
    return WideAndDeep.make_with("wide_n_deep", 3, info, [16, 8], **kwargs)


def get_input() -> torch.Tensor:
    return torch.tensor(
        [
            [1.0, 7.0, 1.0, 0.0, 0.0, 2.0, 0.3],
            [9.0, 49.0, 0.0, 1.0, 1.0, 4.0, -1.2],
            [0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0],
        ]
    )


class TestPersistence(unittest.TestCase):
    def _perturb(self, m: IRecommender) -> None:
        with torch.no_grad():
            for p in m.parameters():
                p.add_(torch.randn_like(p))

    def _check_same(self, m0: IRecommender, m1: IRecommender) -> None:
        self.assertIs(type(m0), type(m1))
        self.assertDictEqual(m0.config.asdict(), m1.config.asdict())
        x = get_input()
        self.assertTrue(torch.allclose(m0.predict(x), m1.predict(x)))

    def test_save_load(self) -> None:
        m = get_model()
        self._perturb(m)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "wnd", "model.pt")
            m.save_model(path)
            loaded = WideAndDeep.load_model(path)
            self._check_same(m, loaded)
            self._check_same(m, cfrec.load_model(Path(path)))

    def test_save_load_with_weight_path(self) -> None:
        m = get_model(dtype="float64", batch_norm=True)
        self._perturb(m)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "model.pt")
            weight_path = os.path.join(tmp, "model.safetensors")
            m.save_model(path, weight_path)
            weights = load_file(weight_path)
            self.assertSetEqual(set(weights), set(m.state_dict()))
            loaded = WideAndDeep.load_model(path, weight_path)
            self.assertIs(loaded.dtype, torch.float64)
            self._check_same(m, loaded)
            with self.assertRaises(ValueError):
                WideAndDeep.load_model(path)

    def test_over_write(self) -> None:
        m = get_model()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "model.pt")
            weight_path = os.path.join(tmp, "model.safetensors")
            m.save_model(path)
            with self.assertRaises(FileExistsError):
                m.save_model(path)
            with self.assertRaises(FileExistsError):
                m.save_model(os.path.join(tmp, "other.pt"), path)
            self._perturb(m)
            m.save_model(path, over_write=True)
            self._check_same(m, WideAndDeep.load_model(path))
            m.save_model(path, weight_path, over_write=True)
            with self.assertRaises(FileExistsError):
                m.save_model(path, weight_path)

    def test_save_load_non_builtin_config(self) -> None:
        info = ColumnFeatureInfo(
            wide_base_cols=["a"],
            wide_base_dims=np.array([10]),
            embed_cols=["b"],
            embed_in_dims=np.array([5], dtype=np.int64),
            embed_out_dims=[np.int64(4)],
            continuous_cols=["c"],
        )
        x = torch.tensor([[1.0, 2.0, 0.3], [9.0, 4.0, -1.2]])
        models = [
            WideAndDeep.make_with(ModelTypes.WIDE, 2, info),
            WideAndDeep.make_with("wide_n_deep", 2, info, np.array([16, 8])),
        ]
        with tempfile.TemporaryDirectory() as tmp:
            for i, m in enumerate(models):
                self._perturb(m)
                path = os.path.join(tmp, f"model_{i}.pt")
                m.save_model(path)
                loaded = WideAndDeep.load_model(path)
                self.assertTrue(torch.allclose(m.predict(x), loaded.predict(x)))
                self.assertDictEqual(m.config.asdict(), loaded.config.asdict())
                for dims in [loaded.config.embed_in_dims, loaded.config.hidden_layers]:
                    self.assertTrue(all(type(dim) is int for dim in dims))
        self.assertEqual(models[0].config.model_type, "wide")
        self.assertIs(type(models[0].config.model_type), str)
        self.assertListEqual(models[1].config.hidden_layers, [16, 8])

    def test_failed_config_write(self) -> None:
        m = get_model()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "model.pt")
            weight_path = os.path.join(tmp, "model.safetensors")

            def _open(target: str, mode: str = "rb") -> object:
                if str(target) == path:
                    raise OSError("disk is full")
                return open_file(target, mode)

            with patch("cfrec.models.base.open_file", side_effect=_open):
                with self.assertRaises(OSError):
                    m.save_model(path, weight_path)
            self.assertFalse(os.path.exists(path))
            self.assertFalse(os.path.exists(weight_path))
            m.save_model(path, weight_path)
            self._check_same(m, WideAndDeep.load_model(path, weight_path))

    def test_load_type_mismatch(self) -> None:
        toy = ToyRecommender.from_config(ToyConfig())
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "toy.pt")
            toy.save_model(path)
            with self.assertRaises(TypeError):
                WideAndDeep.load_model(path)
            loaded = cfrec.load_model(path)
            self.assertIsInstance(loaded, ToyRecommender)
            self._check_same(toy, loaded)

    def test_load_invalid(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "states.pt")
            torch.save({"states": {}}, path)
            with self.assertRaises(ValueError):
                cfrec.load_model(path)
            path = os.path.join(tmp, "unknown.pt")
            torch.save({"config": {"type": "unknown", "info": {}}}, path)
            with self.assertRaises(ValueError):
                cfrec.load_model(path)

    def test_remote(self) -> None:
        m = get_model()
        self._perturb(m)
        path = "memory://cfrec-test/wnd/model.pt"
        weight_path = "memory://cfrec-test/wnd/model.safetensors"
        with tempfile.TemporaryDirectory() as tmp:
            with patch.dict(OPT._opt, {"cache_dir": Path(tmp)}):
                m.save_model(path, weight_path, over_write=True)
                with self.assertRaises(FileExistsError):
                    m.save_model(path, weight_path)
                self._check_same(m, WideAndDeep.load_model(path, weight_path))


if __name__ == "__main__":
    unittest.main()
