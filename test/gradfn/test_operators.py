import inspect
import threading
from unittest import TestCase

import numpy as np
import torch  # for comparison

from gradfn import functional, operators
from gradfn.config import GradConfig, set_config
from gradfn.errors import ConfigurationError, ShapeMismatchError
from gradfn.operators import (
    add_all,
    biaffine,
    bilinear,
    col_views,
    concat,
    dropout_func,
    log_softmax,
    log_sum_exp,
    map2,
    map2_concurrent,
    map_concurrent,
    maximum,
    mean,
    minimum,
    pad,
    positive_elu,
    reverse_sub,
    row_views,
    separate_matrix,
    separate_vec,
    split_vec,
    sub,
    tanh,
)
from gradfn.tensor import Variable, backward, scalar
from gradfn.utils import check_gradients


class TestListComposites(TestCase):
    def setUp(self) -> None:
        self.a = Variable([1.0, 5.0, -1.0])
        self.b = Variable([2.0, 3.0, 0.0])
        self.c = Variable([0.5, 4.0, -3.0])

    def test_add_all(self):
        y = add_all([self.a, self.b, self.c])
        assert np.allclose(y.value.ravel(), [3.5, 12.0, -4.0])
        backward(y)
        for v in (self.a, self.b, self.c):
            assert np.array_equal(v.grad, np.ones((3, 1)))

    def test_mean(self):
        y = mean([self.a, self.b, self.c])
        assert np.allclose(y.value.ravel(), [3.5 / 3, 4.0, -4.0 / 3])
        backward(y)
        assert np.allclose(self.a.grad, np.full((3, 1), 1.0 / 3))

    def test_maximum(self):
        y = maximum([self.a, self.b, self.c])
        assert np.array_equal(y.value.ravel(), [2.0, 5.0, 0.0])
        backward(y)
        assert np.array_equal(self.a.grad.ravel(), [0.0, 1.0, 0.0])
        assert np.array_equal(self.b.grad.ravel(), [1.0, 0.0, 1.0])

    def test_minimum(self):
        y = minimum([self.a, self.b, self.c])
        assert np.array_equal(y.value.ravel(), [0.5, 3.0, -3.0])

    def test_empty(self):
        with self.assertRaises(ConfigurationError):
            add_all([])
        with self.assertRaises(ConfigurationError):
            maximum([])


class TestForms(TestCase):
    def setUp(self) -> None:
        rng = np.random.default_rng(0)
        self.w = rng.normal(size=(3, 2))
        self.u = rng.normal(size=(3, 1))
        self.v = rng.normal(size=(2, 1))
        self.b = rng.normal(size=(1, 1))
        self.x1 = rng.normal(size=(3, 1))
        self.x2 = rng.normal(size=(2, 1))

    def test_bilinear(self):
        y = bilinear(Variable(self.w), Variable(self.x1), Variable(self.x2))
        assert np.allclose(y.value, self.x1.T @ self.w @ self.x2)
        assert check_gradients(bilinear, self.w, self.x1, self.x2)

    def test_biaffine(self):
        y = biaffine(
            Variable(self.w),
            Variable(self.u),
            Variable(self.v),
            Variable(self.b),
            Variable(self.x1),
            Variable(self.x2),
        )
        expected = (
            self.x1.T @ self.w @ self.x2 + self.u.T @ self.x1 + self.v.T @ self.x2 + self.b
        )
        assert np.allclose(y.value, expected)
        assert check_gradients(
            biaffine, self.w, self.u, self.v, self.b, self.x1, self.x2
        )


class TestActivationComposites(TestCase):
    def setUp(self) -> None:
        self.data = np.array([-1.5, -0.2, 0.3, 2.0])

    def test_positive_elu(self):
        x = Variable(self.data)
        y = positive_elu(x)
        x_torch = torch.tensor(self.data, requires_grad=True)
        y_torch = torch.nn.functional.elu(x_torch) + 1.0
        assert np.all(y.value > 0)
        assert np.allclose(y.value.ravel(), y_torch.detach().numpy())

    def test_log_softmax(self):
        gy = np.array([0.5, -1.0, 0.2, 0.1])
        x = Variable(self.data)
        y = log_softmax(x)
        x_torch = torch.tensor(self.data, requires_grad=True)
        y_torch = torch.log_softmax(x_torch, dim=0)
        backward(y, gy)
        y_torch.backward(torch.tensor(gy))
        assert np.allclose(y.value.ravel(), y_torch.detach().numpy())
        assert np.allclose(x.grad.ravel(), x_torch.grad.numpy())

    def test_log_sum_exp_vector(self):
        x = Variable(self.data)
        y = log_sum_exp(x)
        x_torch = torch.tensor(self.data, requires_grad=True)
        y_torch = torch.logsumexp(x_torch, dim=0)
        backward(y)
        y_torch.backward()
        assert np.allclose(y.value.item(), y_torch.item())
        assert np.allclose(x.grad.ravel(), x_torch.grad.numpy())

    def test_log_sum_exp_scalars(self):
        xs = [scalar(v, requires_grad=True) for v in self.data]
        y = log_sum_exp(*xs)
        assert np.isclose(y.value.item(), np.log(np.sum(np.exp(self.data))))
        backward(y)
        softmax = np.exp(self.data) / np.sum(np.exp(self.data))
        assert np.allclose([x.grad.item() for x in xs], softmax)

    def test_log_sum_exp_is_stable(self):
        y = log_sum_exp(Variable([1000.0, 1000.0]))
        assert np.isclose(y.value.item(), 1000.0 + np.log(2.0))


class TestSeparation(TestCase):
    def setUp(self) -> None:
        self.x = Variable(np.arange(1.0, 7.0).reshape(2, 3))

    def test_separate_matrix(self):
        ys = separate_matrix(self.x)
        assert len(ys) == 2 and len(ys[0]) == 3
        assert ys[1][2].value.item() == 6.0
        backward(ys[1][2])
        assert self.x.grad[1, 2] == 1.0

    def test_separate_vec_inverts_concat(self):
        ys = separate_vec(self.x)
        assert [y.value.item() for y in ys] == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
        y = concat(*ys)
        assert np.array_equal(y.value.ravel(), self.x.value.ravel())
        backward(y, np.arange(6.0))
        assert np.array_equal(self.x.grad, np.arange(6.0).reshape(2, 3))

    def test_split_vec(self):
        v = Variable(np.arange(6.0))
        chunks = split_vec(v, 3)
        assert [c.value.ravel().tolist() for c in chunks] == [
            [0.0, 1.0],
            [2.0, 3.0],
            [4.0, 5.0],
        ]
        with self.assertRaises(ShapeMismatchError):
            split_vec(v, 4)

    def test_row_and_col_views(self):
        rows = row_views(self.x)
        cols = col_views(self.x)
        assert len(rows) == 2 and len(cols) == 3
        assert rows[1].value.ravel().tolist() == [4.0, 5.0, 6.0]
        assert cols[2].value.ravel().tolist() == [3.0, 6.0]


class TestAliases(TestCase):
    def test_sum_is_variadic_add_all(self):
        a = Variable([1.0, 2.0])
        b = Variable([3.0, -1.0])
        y = operators.sum(a, b)
        assert np.array_equal(y.value, add_all([a, b]).value)
        backward(y)
        assert np.array_equal(a.grad, np.ones((2, 1)))

    def test_sum_needs_operands(self):
        with self.assertRaises(ConfigurationError):
            operators.sum()

    def test_reverse_sub(self):
        x = Variable([1.0, 2.0, 3.0])
        s = scalar(10.0, requires_grad=True)
        y = reverse_sub(x, s)
        assert np.array_equal(y.value.ravel(), [9.0, 8.0, 7.0])
        backward(y, [1.0, 0.5, 2.0])
        assert np.array_equal(x.grad.ravel(), [-1.0, -0.5, -2.0])
        assert s.grad.item() == 3.5


class TestDropoutFunc(TestCase):
    def test_zero_probability_is_identity(self):
        x = Variable([1.0, 2.0])
        assert dropout_func(0.0)(x) is x

    def test_same_as_dropout_with_same_generator(self):
        data = np.arange(1.0, 21.0).reshape(4, 5)
        drop = dropout_func(0.5, rng=np.random.default_rng(3))
        y = drop(Variable(data))
        expected = np.random.default_rng(3).binomial(1, 0.5, size=data.shape) / 0.5
        assert np.allclose(y.value, data * expected)

    def test_mapped_over_sequence(self):
        xs = [Variable(np.ones((2, 2))) for _ in range(3)]
        ys = operators.map(dropout_func(1.0), xs)
        for y in ys:
            assert np.array_equal(y.value, np.zeros((2, 2)))


class TestMap(TestCase):
    def setUp(self) -> None:
        self.xs = [Variable([v, -v]) for v in (0.1, 0.5, 1.0, 2.0)]

    def test_map_in_order(self):
        ys = operators.map(tanh, self.xs)
        assert len(ys) == len(self.xs)
        for x, y in zip(self.xs, ys):
            assert np.allclose(y.value, np.tanh(x.value))

    def test_map_concurrent_keeps_order(self):
        ys = map_concurrent(tanh, self.xs)
        for x, y in zip(self.xs, ys):
            assert np.allclose(y.value, np.tanh(x.value))

        backward(add_all(ys))
        for x in self.xs:
            assert np.allclose(x.grad, 1.0 - np.tanh(x.value) ** 2)

    def test_map_concurrent_runs_in_pool(self):
        names = map_concurrent(lambda x: threading.current_thread().name, self.xs)
        assert all(name.startswith("gradfn") for name in names)

    def test_map_concurrent_serial_when_disabled(self):
        set_config(GradConfig(parallel_backward=False))
        names = map_concurrent(lambda x: threading.current_thread().name, self.xs)
        assert names == [threading.current_thread().name] * len(self.xs)

    def test_map2(self):
        ys = map2(sub, self.xs, self.xs[::-1])
        assert np.allclose(ys[0].value, self.xs[0].value - self.xs[3].value)
        ys = map2_concurrent(sub, self.xs, self.xs[::-1])
        assert np.allclose(ys[1].value, self.xs[1].value - self.xs[2].value)

    def test_map2_length_mismatch(self):
        with self.assertRaises(ShapeMismatchError):
            map2(sub, self.xs, self.xs[:2])
        with self.assertRaises(ShapeMismatchError):
            map2_concurrent(sub, self.xs, self.xs[:2])


class TestPad(TestCase):
    def setUp(self) -> None:
        self.xs = [Variable([float(i)]) for i in range(3)]

    def padding(self, i):
        return Variable([-float(i)])

    def test_same_length(self):
        padded = pad(self.xs, 3, self.padding)
        assert all(p is x for p, x in zip(padded, self.xs)) and len(padded) == 3

    def test_truncates(self):
        padded = pad(self.xs, 2, self.padding)
        assert len(padded) == 2 and padded[1] is self.xs[1]

    def test_extends(self):
        padded = pad(self.xs, 5, self.padding)
        assert all(p is x for p, x in zip(padded[:3], self.xs))
        assert [p.value.item() for p in padded[3:]] == [-3.0, -4.0]

    def test_negative_length(self):
        with self.assertRaises(ConfigurationError):
            pad(self.xs, -1, self.padding)


class TestDocumentation(TestCase):
    def _public_functions(self, module):
        return [
            obj
            for name, obj in vars(module).items()
            if inspect.isfunction(obj)
            and not name.startswith("_")
            and obj.__module__ == module.__name__
        ]

    def test_every_builder_has_a_docstring(self):
        for module in (operators, functional):
            for fn in self._public_functions(module):
                assert fn.__doc__ and fn.__doc__.strip(), f"{module.__name__}.{fn.__name__}"

    def test_activation_builders_document_their_result(self):
        for fn in self._public_functions(functional):
            assert "Returns:" in fn.__doc__, fn.__name__
