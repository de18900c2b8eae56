from unittest import TestCase

import numpy as np

from gradfn.errors import ConfigurationError, ShapeMismatchError
from gradfn.operators import (
    append_rows,
    at,
    at_vec,
    col_view,
    concat,
    flatten,
    reshape,
    rotate_r,
    row_view,
    slice,
    stack,
)
from gradfn.shape import At, ColView, RowView, Slice
from gradfn.tensor import Variable, backward
from gradfn.utils import check_gradients


class TestSelection(TestCase):
    def setUp(self) -> None:
        self.data = np.arange(1.0, 13.0).reshape(3, 4)
        self.x = Variable(self.data)

    def test_at(self):
        y = at(self.x, 1, 2)
        assert y.value.shape == (1, 1)
        assert y.value.item() == 7.0
        backward(y, 2.0)
        expected = np.zeros((3, 4))
        expected[1, 2] = 2.0
        assert np.array_equal(self.x.grad, expected)

    def test_at_vec(self):
        y = at_vec(self.x, 5)
        assert y.value.item() == 6.0
        backward(y)
        assert self.x.grad.ravel()[5] == 1.0
        assert np.sum(self.x.grad) == 1.0

    def test_row_view(self):
        y = row_view(self.x, 2)
        assert np.array_equal(y.value, self.data[2:3])
        backward(y, [[1.0, 2.0, 3.0, 4.0]])
        assert np.array_equal(self.x.grad[2], [1.0, 2.0, 3.0, 4.0])
        assert np.sum(self.x.grad[:2]) == 0.0

    def test_col_view(self):
        y = col_view(self.x, 1)
        assert y.value.shape == (3, 1)
        backward(y, [1.0, 1.0, 1.0])
        assert np.array_equal(self.x.grad[:, 1], [1.0, 1.0, 1.0])

    def test_output_is_a_copy(self):
        y = row_view(self.x, 0)
        y.value[0, 0] = 100.0
        assert self.x.value[0, 0] == 1.0

    def test_slice(self):
        y = slice(self.x, 1, 1, 3, 3)
        assert np.array_equal(y.value, self.data[1:3, 1:3])
        backward(y)
        expected = np.zeros((3, 4))
        expected[1:3, 1:3] = 1.0
        assert np.array_equal(self.x.grad, expected)

    def test_negative_indices_rejected_at_construction(self):
        with self.assertRaises(ConfigurationError):
            RowView(self.x, -1)
        with self.assertRaises(ConfigurationError):
            ColView(self.x, -1)
        with self.assertRaises(ConfigurationError):
            At(self.x, 0, -2)

    def test_inverted_slice_bounds(self):
        with self.assertRaises(ConfigurationError):
            Slice(self.x, 2, 0, 1, 1)

    def test_out_of_range(self):
        with self.assertRaises(ConfigurationError):
            row_view(self.x, 3)
        with self.assertRaises(ConfigurationError):
            col_view(self.x, 4)
        with self.assertRaises(ConfigurationError):
            at_vec(self.x, 12)
        with self.assertRaises(ConfigurationError):
            slice(self.x, 0, 0, 4, 1)

    def test_row_view_gradient_shape(self):
        fn = RowView(self.x, 0)
        fn.forward()
        with self.assertRaises(ShapeMismatchError):
            fn.backward(np.ones((4, 1)))


class TestReshape(TestCase):
    def test_reshape(self):
        x = Variable(np.arange(6.0).reshape(2, 3))
        y = reshape(x, 3, 2)
        assert np.array_equal(y.value, np.arange(6.0).reshape(3, 2))
        gy = np.arange(6.0).reshape(3, 2) * 10
        backward(y, gy)
        assert np.array_equal(x.grad, gy.reshape(2, 3))

    def test_reshape_size_mismatch(self):
        with self.assertRaises(ShapeMismatchError):
            reshape(Variable(np.ones((2, 3))), 4, 2)

    def test_flatten_is_row_major(self):
        x = Variable([[1.0, 2.0], [3.0, 4.0]])
        y = flatten(x)
        assert np.array_equal(y.value, [[1.0], [2.0], [3.0], [4.0]])
        backward(y, [1.0, 2.0, 3.0, 4.0])
        assert np.array_equal(x.grad, [[1.0, 2.0], [3.0, 4.0]])


class TestJoin(TestCase):
    def test_concat(self):
        a = Variable([[1.0, 2.0], [3.0, 4.0]])
        b = Variable([5.0, 6.0])
        y = concat(a, b)
        assert np.array_equal(y.value.ravel(), [1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
        backward(y, [10.0, 20.0, 30.0, 40.0, 50.0, 60.0])
        assert np.array_equal(a.grad, [[10.0, 20.0], [30.0, 40.0]])
        assert np.array_equal(b.grad, [[50.0], [60.0]])

    def test_stack(self):
        a = Variable([1.0, 2.0, 3.0])
        b = Variable([[4.0, 5.0, 6.0]])
        y = stack(a, b)
        assert np.array_equal(y.value, [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
        backward(y, [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
        assert np.array_equal(a.grad, [[1.0], [2.0], [3.0]])
        assert np.array_equal(b.grad, [[4.0, 5.0, 6.0]])

    def test_stack_sizes_must_match(self):
        with self.assertRaises(ShapeMismatchError):
            stack(Variable([1.0, 2.0]), Variable([1.0, 2.0, 3.0]))

    def test_append_rows(self):
        x = Variable([[1.0, 2.0], [3.0, 4.0]])
        v = Variable([5.0, 6.0])
        y = append_rows(x, v)
        assert np.array_equal(y.value, [[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        backward(y, [[1.0, 1.0], [2.0, 2.0], [3.0, 4.0]])
        assert np.array_equal(x.grad, [[1.0, 1.0], [2.0, 2.0]])
        assert np.array_equal(v.grad, [[3.0], [4.0]])

    def test_append_rows_size(self):
        with self.assertRaises(ShapeMismatchError):
            append_rows(Variable(np.ones((2, 2))), Variable([1.0, 2.0, 3.0]))


class TestRotate(TestCase):
    def test_rotate_r(self):
        x = Variable([1.0, 2.0, 3.0, 4.0])
        y = rotate_r(x, 1)
        assert np.array_equal(y.value.ravel(), [4.0, 1.0, 2.0, 3.0])
        backward(y, [10.0, 20.0, 30.0, 40.0])
        # the gradient of y[0] belongs to x[3]
        assert np.array_equal(x.grad.ravel(), [20.0, 30.0, 40.0, 10.0])

    def test_gradient_check(self):
        data = np.array([[0.3, -1.0, 2.0], [0.5, 0.25, -0.75]])
        assert check_gradients(lambda x: rotate_r(x, 4), data)
        assert check_gradients(lambda x: slice(x, 0, 1, 2, 3), data)
        assert check_gradients(lambda x: reshape(x, 3, 2), data)
