import torch
import cfrec
import unittest
import dataclasses

import numpy as np

from cfrec import WideAndDeep
from cfrec import ColumnFeatureInfo
from cfrec import UserItemPrediction
from unittest.mock import patch


def get_info() -> ColumnFeatureInfo:
    return ColumnFeatureInfo(
        wide_base_cols=["a"],
        wide_base_dims=[10],
        embed_cols=["b"],
        embed_in_dims=[5],
        embed_out_dims=[4],
        continuous_cols=["c"],
    )


def get_input(batch_size: int, seed: int = 142857) -> torch.Tensor:
    generator = torch.Generator().manual_seed(seed)
    a = torch.randint(0, 10, [batch_size, 1], generator=generator)
    b = torch.randint(0, 5, [batch_size, 1], generator=generator)
    c = torch.randn(batch_size, 1, generator=generator)
    return torch.cat([a.to(torch.float32), b.to(torch.float32), c], dim=1)


class TestWideAndDeep(unittest.TestCase):
    def test_wide_n_deep(self) -> None:
        m = WideAndDeep.make_with("wide_n_deep", 2, get_info())
        self.assertEqual(m.num_classes, 2)
        self.assertEqual(m.input_dim, 3)
        self.assertEqual(m.m.deep.columns.output_dim, 5)
        self.assertEqual(m.m.deep.fcnn.net[0].weight.shape[1], 5)
        self.assertListEqual(m.m.deep.fcnn.hidden_units, [40, 20, 10])
        self.assertIsNotNone(m.m.wide)
        log_probs = m(get_input(8))
        self.assertSequenceEqual(log_probs.shape, [8, 2])
        self.assertTrue(torch.allclose(log_probs.exp().sum(1), torch.ones(8)))

    def test_wide_and_deep_shortcut(self) -> None:
        m = cfrec.wide_and_deep("deep", 3, get_info(), [16, 8])
        self.assertIsInstance(m, WideAndDeep)
        self.assertListEqual(m.config.hidden_layers, [16, 8])
        self.assertSequenceEqual(m(get_input(4)).shape, [4, 3])

    def test_wide(self) -> None:
        m = WideAndDeep.make_with("wide", 4, get_info())
        self.assertIsNone(m.m.deep)
        self.assertTrue(all("deep" not in k for k, _ in m.named_parameters()))
        # wide part starts from zeros
        probs = m.predict(get_input(6)).exp()
        self.assertTrue(torch.allclose(probs, torch.full([6, 4], 0.25)))

    def test_deep(self) -> None:
        m = WideAndDeep.make_with("deep", 2, get_info())
        self.assertIsNone(m.m.wide)
        self.assertTrue(all("wide" not in k for k, _ in m.named_parameters()))
        self.assertSequenceEqual(m(get_input(5)).shape, [5, 2])

    def test_unknown_type(self) -> None:
        with patch("cfrec.models.wnd.build_ml_module") as mock_build:
            with self.assertRaisesRegex(ValueError, "unknown type"):
                WideAndDeep.make_with("foo", 2, get_info())
        mock_build.assert_not_called()

    def test_mismatched_columns(self) -> None:
        info = dataclasses.replace(get_info(), embed_cols=["b", "d"])
        with patch("cfrec.models.wnd.build_ml_module") as mock_build:
            with self.assertRaisesRegex(ValueError, "embeddingColumns"):
                WideAndDeep.make_with("wide_n_deep", 2, info)
        mock_build.assert_not_called()

    def test_missing_arguments(self) -> None:
        with self.assertRaises(ValueError):
            WideAndDeep.make_with("wide_n_deep", None, get_info())
        with self.assertRaises(ValueError):
            WideAndDeep.make_with("wide_n_deep", 2, None)
        with self.assertRaises(ValueError):
            WideAndDeep.make_with("wide_n_deep", 0, get_info())
        info = dataclasses.replace(get_info(), embed_out_dims=[0])
        with patch("cfrec.models.wnd.build_ml_module") as mock_build:
            with self.assertRaisesRegex(ValueError, "should be positive"):
                WideAndDeep.make_with("wide_n_deep", 2, info)
        mock_build.assert_not_called()

    def test_dtype(self) -> None:
        m = WideAndDeep.make_with("wide_n_deep", 2, get_info(), dtype="float64")
        self.assertIs(m.dtype, torch.float64)
        self.assertTrue(all(p.dtype == torch.float64 for p in m.parameters()))
        self.assertIs(m.predict(get_input(3)).dtype, torch.float64)

    def test_seed(self) -> None:
        m0 = WideAndDeep.make_with("wide_n_deep", 2, get_info(), seed=123)
        m1 = WideAndDeep.make_with("wide_n_deep", 2, get_info(), seed=123)
        m2 = WideAndDeep.make_with("wide_n_deep", 2, get_info(), seed=321)
        s0, s1, s2 = map(lambda m: m.state_dict(), [m0, m1, m2])
        for k, v in s0.items():
            self.assertTrue(torch.equal(v, s1[k]))
        key = "deep.columns.embeddings.0.weights"
        self.assertFalse(torch.equal(s0[key], s2[key]))

    def test_seed_keeps_global_state(self) -> None:
        torch.manual_seed(0)
        expected = torch.rand(3)
        torch.manual_seed(0)
        WideAndDeep.make_with("wide_n_deep", 2, get_info(), seed=123)
        self.assertTrue(torch.equal(torch.rand(3), expected))

    def test_embedding_init(self) -> None:
        info = ColumnFeatureInfo(
            embed_cols=["user_id"],
            embed_in_dims=[1000],
            embed_out_dims=[100],
        )
        m = WideAndDeep.make_with("deep", 2, info, seed=1)
        weights = m.m.deep.columns.embeddings[0].weights.data
        self.assertAlmostEqual(weights.mean().item(), 0.0, delta=0.005)
        self.assertAlmostEqual(weights.std().item(), 0.1, delta=0.005)

    def test_predict(self) -> None:
        m = WideAndDeep.make_with("wide_n_deep", 3, get_info(), batch_norm=True)
        x = get_input(10)
        full = m.predict(x)
        batched = m.predict(x.numpy(), batch_size=3)
        self.assertTrue(torch.allclose(full, batched, atol=1.0e-6))
        self.assertTrue(m.m.training)
        classes = m.predict_classes(x)
        self.assertTrue(torch.equal(classes, full.argmax(1)))

    def test_predict_user_item_pair(self) -> None:
        m = WideAndDeep.make_with("wide_n_deep", 2, get_info())
        x = get_input(6)
        user_ids = np.array([1, 1, 1, 2, 2, 3])
        item_ids = np.array([10, 11, 12, 10, 11, 12])
        pairs = m.predict_user_item_pair(user_ids, item_ids, x)
        self.assertEqual(len(pairs), 6)
        log_probs = m.predict(x)
        for pair, user_id, item_id, row in zip(pairs, user_ids, item_ids, log_probs):
            self.assertIsInstance(pair, UserItemPrediction)
            self.assertEqual(pair.user_id, user_id)
            self.assertEqual(pair.item_id, item_id)
            self.assertEqual(pair.prediction, row.argmax().item())
            self.assertAlmostEqual(pair.probability, row.max().exp().item(), places=5)
            self.assertTrue(pair.probability >= 0.5)
        with self.assertRaises(ValueError):
            m.predict_user_item_pair(user_ids[:3], item_ids, x)

    def test_recommend(self) -> None:
        m = WideAndDeep.make_with("wide_n_deep", 2, get_info())
        x = get_input(6)
        user_ids = np.array([1, 1, 1, 2, 2, 3])
        item_ids = np.array([10, 11, 12, 10, 11, 12])
        for_user = m.recommend_for_user(user_ids, item_ids, x, 2)
        self.assertSetEqual(set(for_user), {1, 2, 3})
        self.assertListEqual([len(for_user[k]) for k in [1, 2, 3]], [2, 2, 1])
        for predictions in for_user.values():
            keys = [(p.prediction, p.probability) for p in predictions]
            self.assertListEqual(keys, sorted(keys, reverse=True))
            self.assertEqual(len({p.user_id for p in predictions}), 1)
        for_item = m.recommend_for_item(user_ids, item_ids, x, 1)
        self.assertSetEqual(set(for_item), {10, 11, 12})
        self.assertTrue(all(len(v) == 1 for v in for_item.values()))


if __name__ == "__main__":
    unittest.main()
