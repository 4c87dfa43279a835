import unittest

import numpy as np

import npflow


def _param(values):
    return npflow.array(values, dtype=np.float64, requires_grad=True)


class TestArrayCreation(unittest.TestCase):
    def setUp(self):
        npflow.reset()

    def test_integer_data_defaults_to_float32(self):
        self.assertEqual(npflow.array([1, 2]).dtype, np.float32)
        self.assertEqual(npflow.array([1, 2], dtype=np.int64).dtype, np.int64)
        self.assertEqual(npflow.array([1.5], dtype=np.float64).dtype, np.float64)

    def test_python_scalars_keep_dtype(self):
        a = npflow.array([1, 2])
        self.assertEqual((a * 0.1).dtype, np.float32)
        self.assertEqual((a + 1e-8).sqrt().dtype, np.float32)

    def test_factories(self):
        np.testing.assert_array_equal(npflow.zeros([1, 2]).data, [[0, 0]])
        np.testing.assert_array_equal(npflow.ones(3).data, [1, 1, 1])
        np.testing.assert_array_equal(npflow.full_like(npflow.zeros(2), 0.5).data, [0.5, 0.5])
        self.assertEqual(npflow.scalar(3).shape, ())

    def test_data_sync_returns_a_copy(self):
        a = npflow.array([1, 2])
        values = a.data_sync()
        values[0] = 10
        np.testing.assert_array_equal(a.data, [1, 2])


class TestGradients(unittest.TestCase):
    def setUp(self):
        npflow.reset()

    def test_square_sum(self):
        x = _param([1.0, 2.0])
        x.square().sum().backward()
        np.testing.assert_allclose(x.grad, [2.0, 4.0])

    def test_subtract(self):
        a, b = _param([1.0, 2.0]), _param([3.0])
        (a - b).sum().backward()
        np.testing.assert_allclose(a.grad, [1.0, 1.0])
        np.testing.assert_allclose(b.grad, [-2.0])

    def test_divide(self):
        a, b = _param([1.0, 2.0]), _param([4.0, 8.0])
        (a / b).sum().backward()
        np.testing.assert_allclose(a.grad, [0.25, 0.125])
        np.testing.assert_allclose(b.grad, [-1 / 16, -2 / 64])

    def test_sqrt(self):
        x = _param([4.0, 9.0])
        x.sqrt().sum().backward()
        np.testing.assert_allclose(x.grad, [0.25, 1 / 6])

    def test_exp_log_tanh(self):
        x = _param([0.5, 1.0])
        (npflow.exp(x) + npflow.log(x) + npflow.tanh(x)).sum().backward()
        expected = np.exp([0.5, 1.0]) + 1 / np.array([0.5, 1.0]) + 1 - np.tanh([0.5, 1.0]) ** 2
        np.testing.assert_allclose(x.grad, expected)

    def test_mean(self):
        x = _param([[1.0, 2.0], [3.0, 4.0]])
        x.mean().backward()
        np.testing.assert_allclose(x.grad, np.full((2, 2), 0.25))

    def test_matmul_matrix_vector(self):
        w = _param([[1.0, 2.0]])
        x = _param([2.0, 4.0])
        y = w @ x
        self.assertEqual(y.shape, (1,))
        y.sum().backward()
        np.testing.assert_allclose(w.grad, [[2.0, 4.0]])
        np.testing.assert_allclose(x.grad, [1.0, 2.0])

    def test_matmul_vector_vector(self):
        a, b = _param([1.0, 2.0]), _param([3.0, 4.0])
        npflow.matmul(a, b).backward()
        np.testing.assert_allclose(a.grad, [3.0, 4.0])
        np.testing.assert_allclose(b.grad, [1.0, 2.0])

    def test_matmul_matrices(self):
        a = _param(np.arange(6.0).reshape(2, 3))
        b = _param(np.ones((3, 2)))
        (a @ b).sum().backward()
        np.testing.assert_allclose(a.grad, np.full((2, 3), 2.0))
        np.testing.assert_allclose(b.grad, np.repeat(a.data.sum(0, keepdims=True).T, 2, 1))

    def test_reshape_transpose(self):
        x = _param([[1.0, 2.0, 3.0]])
        (x.reshape((3, 1)) * npflow.array([[1.0], [2.0], [3.0]])).sum().backward()
        np.testing.assert_allclose(x.grad, [[1.0, 2.0, 3.0]])
        y = _param([[1.0, 2.0]])
        (y.T * npflow.array([[3.0], [4.0]])).sum().backward()
        np.testing.assert_allclose(y.grad, [[3.0, 4.0]])

    def test_getitem(self):
        x = _param([1.0, 2.0, 3.0])
        (x[1:] * 2).sum().backward()
        np.testing.assert_allclose(x.grad, [0.0, 2.0, 2.0])

    def test_retain_grad(self):
        x = _param([1.0, 2.0])
        y = x * 3
        y.retain_grad()
        y.sum().backward()
        np.testing.assert_allclose(y.grad, [1.0, 1.0])
        self.assertTrue(x.is_leaf)
        self.assertFalse(y.is_leaf)
        with self.assertRaises(RuntimeError):
            y.requires_grad_(False)

    def test_backward_requires_grad(self):
        with self.assertRaises(RuntimeError):
            npflow.array([1.0]).sum().backward()

    def test_no_grad(self):
        x = _param([1.0])
        with npflow.no_grad():
            y = x * 2
        self.assertFalse(y.requires_grad)
        self.assertTrue(npflow.is_grad_enabled())


if __name__ == "__main__":
    unittest.main()
