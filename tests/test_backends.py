import unittest

import numpy as np

from simtlogreg.backends import ParallelBackend, ScalarBackend, make_backend
from simtlogreg.errors import DataShapeViolation, ResourceExhaustion
from simtlogreg.geometry import LaunchGeometry
from simtlogreg.normalize import normalize
from simtlogreg.session import EmulatedSession, open_session
from simtlogreg.table import make_separable, table_from_arrays


def normalized_table(n=300, f=40, seed=1):
    table = make_separable(n, num_features=f, seed=seed)
    return normalize(table)


class TestGradientAgreement(unittest.TestCase):
    def test_scalar_and_parallel_agree(self):
        table = normalized_table()
        weights = np.random.default_rng(2).normal(0, 0.1, table.num_features + 1)
        grad_s, diff_s = ScalarBackend().compute_gradient(weights, table)
        grad_p, diff_p = ParallelBackend(device="emulated").compute_gradient(weights, table)
        np.testing.assert_allclose(diff_p, diff_s, rtol=1e-10, atol=1e-12)
        np.testing.assert_allclose(grad_p, grad_s, rtol=1e-9, atol=1e-10)

    def test_agree_with_chunked_lanes(self):
        # more instances than lanes: chunk_size > 1 and a remainder chunk
        table = normalized_table(n=2100, f=3, seed=4)
        weights = np.array([0.5, -0.5, 0.1, 0.02])
        grad_s, _ = ScalarBackend().compute_gradient(weights, table)
        grad_p, _ = ParallelBackend(device="emulated").compute_gradient(weights, table)
        np.testing.assert_allclose(grad_p, grad_s, rtol=1e-9, atol=1e-10)

    def test_one_iteration_same_weights(self):
        table = normalized_table(n=120, f=5)
        start = np.zeros(6)
        results = []
        for backend in (ScalarBackend(), ParallelBackend(device="emulated")):
            backend.start(table, start)
            backend.step(alpha=2.0)
            results.append(backend.finish())
        np.testing.assert_allclose(results[1], results[0], rtol=1e-10, atol=1e-12)

    def test_compute_gradient_leaves_weights_alone(self):
        table = normalized_table(n=50, f=4)
        weights = np.full(5, 0.25)
        ParallelBackend(device="emulated").compute_gradient(weights, table)
        np.testing.assert_array_equal(weights, np.full(5, 0.25))


class TestBiasHandling(unittest.TestCase):
    def test_frozen_bias_does_not_move(self):
        table = normalized_table(n=80, f=4)
        start = np.full(5, 0.3)
        for backend in (ScalarBackend(update_bias=False), ParallelBackend(device="emulated", update_bias=False)):
            with self.subTest(backend=backend.name):
                backend.start(table, start)
                for _ in range(3):
                    backend.step(alpha=1.0)
                weights = backend.finish()
                self.assertEqual(weights[-1], 0.3)
                self.assertFalse(np.allclose(weights[:-1], 0.3))

    def test_trained_bias_moves(self):
        # unbalanced labels pull the bias
        X = np.linspace(0.0, 1.0, 40).reshape(-1, 1)
        y = (X[:, 0] > 0.2).astype(int)
        table = normalize(table_from_arrays(X, y))
        backend = ParallelBackend(device="emulated")
        backend.start(table, np.zeros(2))
        backend.step(alpha=1.0)
        self.assertGreater(backend.finish()[-1], 0.0)


class TestParallelErrors(unittest.TestCase):
    def test_too_many_features(self):
        table = table_from_arrays(np.random.default_rng(0).random((4, 1025)), np.array([0, 1, 0, 1]))
        backend = ParallelBackend(device="emulated")
        with self.assertRaises(DataShapeViolation):
            backend.start(table, np.zeros(1026))

    def test_allocation_failure(self):
        table = normalized_table(n=50, f=4)
        backend = ParallelBackend(device="emulated", memory_limit=1024)
        with self.assertRaises(ResourceExhaustion):
            backend.start(table, np.zeros(5))

    def test_session_lifecycle(self):
        table = normalized_table(n=50, f=4)
        geo = LaunchGeometry.plan(50, 4)
        session = open_session(geo, device="emulated")
        self.assertIsInstance(session, EmulatedSession)
        with session:
            session.acquire(table, np.zeros(5))
            session.activate()
            session.update(0.1)
            session.synchronize()
            self.assertEqual(session.read_weights().shape, (5,))
        self.assertFalse(session.acquired)
        with self.assertRaises(RuntimeError):
            session.activate()

    def test_geometry_must_match_table(self):
        table = normalized_table(n=50, f=4)
        session = EmulatedSession(LaunchGeometry.plan(60, 4))
        with self.assertRaises(ValueError):
            session.acquire(table, np.zeros(5))

    def test_unknown_names(self):
        with self.assertRaises(ValueError):
            make_backend("vector")
        with self.assertRaises(ValueError):
            open_session(LaunchGeometry.plan(4, 2), device="tpu")


if __name__ == "__main__":
    unittest.main()
