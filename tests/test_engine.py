import unittest

import numpy as np

import npflow
from npflow import DisposedError


class TestTensorTracking(unittest.TestCase):
    def setUp(self):
        npflow.reset()

    def test_arrays_are_counted_until_disposed(self):
        self.assertEqual(npflow.num_tensors(), 0)
        a = npflow.array([1, 2])
        b = a * 2
        self.assertEqual(npflow.num_tensors(), 2)
        b.dispose()
        self.assertEqual(npflow.num_tensors(), 1)
        a.dispose()
        self.assertEqual(npflow.num_tensors(), 0)

    def test_scalar_and_ndarray_operands_are_not_counted(self):
        x = npflow.array([1.0, 2.0], requires_grad=True)
        y = x * 2
        z = y - 0.1
        w = z / np.array([2.0, 4.0])
        # x, y, z and w only
        self.assertEqual(npflow.num_tensors(), 4)
        s = (1 - w).sum()
        self.assertEqual(npflow.num_tensors(), 6)
        s.backward()
        np.testing.assert_allclose(x.grad, [-1.0, -0.5])
        for a in (s, w, z, y, x):
            a.dispose()
        self.assertEqual(npflow.num_tensors(), 0)

    def test_reductions_of_constants_are_not_counted(self):
        a = npflow.array([[1.0, 2.0], [3.0, 4.0]])
        total = a.sum()
        avg = a.mean()
        flat = a.reshape((4,))
        self.assertEqual(npflow.num_tensors(), 4)
        for x in (total, avg, flat):
            x.dispose()
        self.assertEqual(npflow.num_tensors(), 1)

    def test_dispose_twice_is_noop(self):
        a = npflow.array([1.0])
        a.dispose()
        a.dispose()
        self.assertTrue(a.is_disposed)
        self.assertEqual(npflow.num_tensors(), 0)

    def test_disposed_array_cannot_be_read(self):
        a = npflow.array([1.0, 2.0])
        a.dispose()
        with self.assertRaises(DisposedError):
            a.data
        with self.assertRaises(DisposedError):
            a + 1

    def test_memory(self):
        npflow.array([1, 2])
        self.assertEqual(npflow.memory(), {"num_tensors": 1, "num_bytes": 8})

    def test_reset_forgets_live_arrays(self):
        npflow.array([1, 2])
        npflow.reset()
        self.assertEqual(npflow.num_tensors(), 0)


class TestTidy(unittest.TestCase):
    def setUp(self):
        npflow.reset()

    def test_intermediates_are_disposed(self):
        a = npflow.array([1, 2])
        n = npflow.num_tensors()
        out = npflow.tidy(lambda: (a * 2) + 1)
        # only the result survives
        self.assertEqual(npflow.num_tensors(), n + 1)
        np.testing.assert_allclose(out.data, [3, 5])
        self.assertFalse(a.is_disposed)

    def test_containers_are_returned(self):
        a = npflow.array([1, 2])
        n = npflow.num_tensors()
        out = npflow.tidy(lambda: {"double": a * 2, "pair": [a + 1, a - 1]})
        self.assertEqual(npflow.num_tensors(), n + 3)
        np.testing.assert_allclose(out["pair"][1].data, [0, 1])

    def test_kept_arrays_survive(self):
        a = npflow.array([1, 2])

        def fn():
            kept = npflow.keep(a * 3)
            a * 4
            return kept

        n = npflow.num_tensors()
        kept = npflow.tidy(fn)
        self.assertEqual(npflow.num_tensors(), n + 1)
        self.assertTrue(kept.is_kept)

    def test_nested_result_is_owned_by_outer_scope(self):
        a = npflow.array([1, 2])
        inner = []

        def outer():
            inner.append(npflow.tidy(lambda: a * 2))
            return None

        n = npflow.num_tensors()
        npflow.tidy(outer)
        self.assertEqual(npflow.num_tensors(), n)
        self.assertTrue(inner[0].is_disposed)

    def test_scope_releases_on_error(self):
        a = npflow.array([1, 2])
        n = npflow.num_tensors()
        with self.assertRaises(ZeroDivisionError):
            with npflow.scope():
                a * 2
                1 / 0
        self.assertEqual(npflow.num_tensors(), n)
        self.assertEqual(npflow.get_tracker().scope_depth, 0)

    def test_variables_are_not_disposed_by_scopes(self):
        with npflow.scope():
            v = npflow.variable([1, 2])
        self.assertFalse(v.is_disposed)
        self.assertEqual(npflow.num_tensors(), 1)

    def test_dispose_container(self):
        a, b = npflow.array([1]), npflow.array([2])
        npflow.dispose({"a": a, "rest": (b,)})
        self.assertEqual(npflow.num_tensors(), 0)


if __name__ == "__main__":
    unittest.main()
