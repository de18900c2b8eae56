from unittest import TestCase

import numpy as np
import torch  # for comparison

from gradfn.errors import ConfigurationError, GradFnError, ShapeMismatchError
from gradfn.operators import max_pooling, softmax, sparsemax, sparsemax_loss
from gradfn.projection import MaxPooling, sparsemax_threshold
from gradfn.tensor import Variable, backward
from gradfn.utils import check_gradients


class TestSoftmax(TestCase):
    def setUp(self) -> None:
        self.data = np.array([-0.41, -1.08, 0.0, 0.87, -0.19, -0.75])

    def test_forward(self):
        y = softmax(Variable(self.data))
        assert np.allclose(
            y.value.ravel(),
            [0.1166451, 0.0596882, 0.1757629, 0.4195304, 0.1453487, 0.0830246],
            atol=1e-4,
        )
        assert np.isclose(np.sum(y.value), 1.0)

    def test_against_torch(self):
        gy = np.array([0.3, -0.1, 0.5, 1.2, -0.7, 0.0])
        x = Variable(self.data)
        x_torch = torch.tensor(self.data, requires_grad=True)
        y = softmax(x)
        y_torch = torch.softmax(x_torch, dim=0)
        backward(y, gy)
        y_torch.backward(torch.tensor(gy))
        assert np.allclose(y.value.ravel(), y_torch.detach().numpy())
        assert np.allclose(x.grad.ravel(), x_torch.grad.numpy())

    def test_large_inputs_are_stable(self):
        y = softmax(Variable([1000.0, 1000.0]))
        assert np.allclose(y.value.ravel(), [0.5, 0.5])

    def test_over_all_elements(self):
        y = softmax(Variable([[1.0, 2.0], [3.0, 4.0]]))
        assert y.value.shape == (2, 2)
        assert np.isclose(np.sum(y.value), 1.0)


class TestSparseMax(TestCase):
    def setUp(self) -> None:
        self.data = np.array([0.8053, 0.4594, -0.6136, -0.9460, 1.0722])

    def test_forward(self):
        y = sparsemax(Variable(self.data))
        assert np.allclose(
            y.value.ravel(), [0.3597, 0.0138, 0.0, 0.0, 0.6265], atol=1e-3
        )
        assert np.isclose(np.sum(y.value), 1.0)

    def test_backward(self):
        gy = np.array([0.3, -0.6, 1.0, 2.0, 0.9])
        x = Variable(self.data)
        y = sparsemax(x)
        backward(y, gy)
        # support is {0, 1, 4}, mean of gy over it is 0.2
        assert np.allclose(x.grad.ravel(), [0.1, -0.8, 0.0, 0.0, 0.7])

    def test_gradient_check(self):
        assert check_gradients(
            sparsemax, self.data, gy=np.array([0.3, -0.6, 1.0, 2.0, 0.9])
        )

    def test_threshold(self):
        tau, support = sparsemax_threshold(np.array([[3.0], [1.0], [0.0]]))
        # a single dominant score takes the whole mass
        assert tau == 2.0
        assert support.ravel().tolist() == [True, False, False]


class TestSparseMaxLoss(TestCase):
    def setUp(self) -> None:
        self.data = np.array([0.8053, 0.4594, -0.6136, -0.9460, 1.0722])

    def test_forward(self):
        tau, support = sparsemax_threshold(self.data)
        z = self.data[support]
        regularizer = 0.5 * np.sum(z * z - tau * tau) + 0.5
        y = sparsemax_loss(Variable(self.data))
        assert np.allclose(y.value.ravel(), self.data - regularizer)

    def test_backward(self):
        gy = np.array([0.3, -0.6, 1.0, 2.0, 0.9])
        x = Variable(self.data)
        y = sparsemax_loss(x)
        backward(y, gy)
        p = sparsemax(Variable(self.data)).value.ravel()
        assert np.allclose(x.grad.ravel(), gy - p * np.sum(gy), atol=1e-6)

    def test_gradient_check(self):
        assert check_gradients(
            sparsemax_loss, self.data, gy=np.array([0.3, -0.6, 1.0, 2.0, 0.9])
        )


class TestMaxPooling(TestCase):
    def setUp(self) -> None:
        self.data = np.array(
            [
                [0.4, 0.1, -0.9, -0.5],
                [-0.4, 0.3, 0.7, -0.3],
                [0.8, 0.2, 0.6, 0.7],
                [0.2, -0.1, 0.6, -0.2],
            ]
        )

    def test_forward_and_backward(self):
        x = Variable(self.data)
        y = max_pooling(x, 2, 2)
        assert np.allclose(y.value, [[0.4, 0.7], [0.8, 0.7]])

        backward(y, [[0.5, -0.3], [1.5, -0.8]])
        expected = np.zeros((4, 4))
        expected[0, 0] = 0.5
        expected[1, 2] = -0.3
        expected[2, 0] = 1.5
        expected[2, 3] = -0.8
        assert np.allclose(x.grad, expected)

    def test_first_occurrence_wins(self):
        x = Variable([[1.0, 1.0], [1.0, 1.0]])
        y = max_pooling(x, 2, 2)
        backward(y)
        assert np.array_equal(x.grad, [[1.0, 0.0], [0.0, 0.0]])

    def test_rectangular_windows(self):
        x_data = np.arange(12.0).reshape(2, 6)
        x = Variable(x_data)
        y = max_pooling(x, 2, 3)
        assert np.array_equal(y.value, [[8.0, 11.0]])

        x_torch = torch.tensor(x_data.reshape(1, 1, 2, 6), requires_grad=True)
        y_torch = torch.nn.functional.max_pool2d(x_torch, kernel_size=(2, 3))
        y_torch.backward(torch.tensor([[[[2.0, 3.0]]]]))
        backward(y, [[2.0, 3.0]])
        assert np.allclose(x.grad, x_torch.grad.numpy().reshape(2, 6))

    def test_not_divisible(self):
        with self.assertRaises(ShapeMismatchError):
            max_pooling(Variable(np.ones((3, 4))), 2, 2)

    def test_invalid_window(self):
        with self.assertRaises(ConfigurationError):
            MaxPooling(Variable(np.ones((4, 4))), 0, 2)


class TestSinglePrecision(TestCase):
    def test_output_and_gradient_stay_float32(self):
        data = np.array([[0.4, 0.1, -0.9, -0.5], [-0.4, 0.3, 0.7, -0.3]], dtype=np.float32)
        for fn in (
            softmax,
            sparsemax,
            sparsemax_loss,
            lambda x: max_pooling(x, 2, 2),
        ):
            x = Variable(data)
            y = fn(x)
            assert y.value.dtype == np.float32, fn
            backward(y)
            assert x.grad.dtype == np.float32, fn


class TestEmptyInput(TestCase):
    def test_projections_reject_empty(self):
        for fn in (softmax, sparsemax, sparsemax_loss, lambda x: max_pooling(x, 1, 1)):
            with self.assertRaises(ShapeMismatchError):
                fn(Variable(np.zeros((0, 3))))

    def test_error_is_in_taxonomy(self):
        with self.assertRaises(GradFnError) as ctx:
            softmax(Variable(np.zeros((2, 0))))
        assert ctx.exception.actual == (2, 0)
