import threading
from unittest import TestCase

import numpy as np
import torch  # for comparison

from gradfn.elementwise import Add, Prod
from gradfn.errors import MissingCachedStateError, ShapeMismatchError
from gradfn.operators import mul, prod, reduce_sum, tanh
from gradfn.tensor import (
    FunctionState,
    Operator,
    Variable,
    as_matrix,
    backward,
    scalar,
)


class TestAsMatrix(TestCase):
    def test_scalar_becomes_one_by_one(self):
        assert as_matrix(3.0).shape == (1, 1)

    def test_sequence_becomes_column_vector(self):
        assert as_matrix([1, 2, 3]).shape == (3, 1)

    def test_integers_become_float64(self):
        assert as_matrix([[1, 2], [3, 4]]).dtype == np.float64

    def test_float32_is_kept(self):
        assert as_matrix(np.ones((2, 2), dtype=np.float32)).dtype == np.float32

    def test_more_than_two_dimensions(self):
        with self.assertRaises(ShapeMismatchError):
            as_matrix(np.ones((2, 2, 2)))


class TestVariable(TestCase):
    def setUp(self) -> None:
        self.x = Variable([[1.0, 2.0], [3.0, 4.0]])

    def test_init_gradients(self):
        assert self.x.grad is None  # lazy init until something is accumulated
        assert self.x.requires_grad
        assert not scalar(1.0).requires_grad
        assert scalar(1.0).shape == (1, 1)

    def test_acc_grad_copies_first_gradient(self):
        g = np.ones((2, 2))
        self.x.acc_grad(g)
        g[0, 0] = 100.0
        assert np.array_equal(self.x.grad, np.ones((2, 2)))

    def test_acc_grad_adds(self):
        self.x.acc_grad(np.ones((2, 2)))
        self.x.acc_grad(np.full((2, 2), 2.0))
        assert np.array_equal(self.x.grad, np.full((2, 2), 3.0))

    def test_acc_grad_shape_mismatch(self):
        with self.assertRaises(ShapeMismatchError):
            self.x.acc_grad(np.ones((3, 2)))
        assert self.x.grad is None

    def test_zero_grad(self):
        self.x.acc_grad(np.ones((2, 2)))
        self.x.zero_grad()
        assert self.x.grad is None

    def test_concurrent_acc_grad(self):
        n_threads, n_iter = 8, 200

        def worker():
            for _ in range(n_iter):
                self.x.acc_grad(np.ones((2, 2)))

        threads = [threading.Thread(target=worker) for _ in range(n_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert np.array_equal(self.x.grad, np.full((2, 2), n_threads * n_iter))


class TestFunctionLifecycle(TestCase):
    def setUp(self) -> None:
        self.x1 = Variable([1.0, 2.0, 3.0])
        self.x2 = Variable([4.0, 5.0, 6.0])

    def test_backward_before_forward(self):
        fn = Add(self.x1, self.x2)
        assert fn.state is FunctionState.CREATED
        with self.assertRaises(MissingCachedStateError):
            fn.backward(np.ones((3, 1)))

    def test_backward_twice(self):
        fn = Prod(self.x1, self.x2)
        fn.forward()
        fn.backward(np.ones((3, 1)))
        assert fn.state is FunctionState.BACKWARDED
        with self.assertRaises(MissingCachedStateError):
            fn.backward(np.ones((3, 1)))
        with self.assertRaises(MissingCachedStateError):
            fn.forward()

    def test_forward_can_be_repeated(self):
        fn = Add(self.x1, self.x2)
        y1 = fn.forward()
        y2 = fn.forward()
        assert np.array_equal(y1, y2)
        assert fn.state is FunctionState.FORWARDED

    def test_failed_backward_leaves_no_trace(self):
        fn = Prod(self.x1, self.x2)
        fn.forward()
        with self.assertRaises(ShapeMismatchError):
            fn.backward(np.ones((2, 1)))
        assert fn.state is FunctionState.FORWARDED
        assert self.x1.grad is None
        assert self.x2.grad is None
        fn.backward(np.ones((3, 1)))
        assert np.array_equal(self.x1.grad, self.x2.value)

    def test_operands_are_static(self):
        fn = Add(self.x1, self.x2)
        assert fn.operands() == [self.x1, self.x2]
        assert fn.operands() == [self.x1, self.x2]

    def test_no_grad_operands_are_skipped(self):
        const = Variable([1.0, 1.0, 1.0], requires_grad=False)
        fn = Prod(self.x1, const)
        fn.forward()
        fn.backward(np.ones((3, 1)))
        assert const.grad is None
        assert np.array_equal(self.x1.grad, np.ones((3, 1)))


class TestBackward(TestCase):
    def test_operator_requires_grad(self):
        const = Variable([1.0, 2.0], requires_grad=False)
        assert not prod(const, const).requires_grad
        assert prod(const, Variable([1.0, 2.0])).requires_grad

    def test_operator_holds_creator(self):
        x = Variable([1.0, 2.0])
        y = tanh(x)
        assert isinstance(y, Operator)
        assert y.creator.operands() == [x]

    def test_shared_operand_accumulates(self):
        # y = sum(x * x) uses x twice
        x = Variable([1.0, -2.0, 3.0])
        y = reduce_sum(prod(x, x))
        backward(y)
        assert np.allclose(x.grad, 2 * x.value)

    def test_against_torch(self):
        w_data = np.array([[0.5, -0.2, 0.1], [0.3, 0.8, -0.7]])
        x_data = np.array([[1.0], [2.0], [-1.0]])

        w = Variable(w_data)
        x = Variable(x_data)
        y = reduce_sum(tanh(mul(w, x)))
        backward(y)

        w_torch = torch.tensor(w_data, requires_grad=True)
        x_torch = torch.tensor(x_data, requires_grad=True)
        y_torch = torch.tanh(w_torch @ x_torch).sum()
        y_torch.backward()

        assert np.allclose(y.value, y_torch.detach().numpy())
        assert np.allclose(w.grad, w_torch.grad.numpy())
        assert np.allclose(x.grad, x_torch.grad.numpy())

    def test_custom_upstream_gradient(self):
        x = Variable([1.0, 2.0])
        y = prod(x, Variable([3.0, 4.0], requires_grad=False))
        backward(y, [1.0, 0.5])
        assert np.allclose(x.grad, [[3.0], [2.0]])

    def test_graph_released_after_backward(self):
        x = Variable([1.0, 2.0])
        y = tanh(x)
        backward(y)
        assert y.creator is None
        grad = x.grad.copy()
        # a second pass only reaches y itself
        backward(y)
        assert np.array_equal(x.grad, grad)

    def test_constant_output(self):
        x = Variable([1.0, 2.0], requires_grad=False)
        y = tanh(x)
        backward(y)
        assert y.grad is None
        assert x.grad is None
