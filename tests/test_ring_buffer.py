"""
Ring buffer tests
"""

import numpy as np
import pytest

from scintpll.utils.ring_buffer import RingBuffer


class TestRingBuffer:
    """Test the fixed capacity circular buffer."""

    def test_fill(self):
        buf = RingBuffer(3)
        assert len(buf) == 0 and not buf.is_full
        buf.Push(1.0)
        buf.Push(2.0)
        np.testing.assert_array_equal(buf.Ordered(), [1.0, 2.0])
        buf.Push(3.0)
        assert buf.is_full

    def test_overwrites_oldest(self):
        buf = RingBuffer(3)
        for v in range(7):
            buf.Push(float(v))
            assert len(buf) <= 3
        np.testing.assert_array_equal(buf.Ordered(), [4.0, 5.0, 6.0])
        assert buf.buffer.shape == (3,)

    def test_vector_entries(self):
        buf = RingBuffer(2, shape=(2,))
        buf.Push([1.0, 2.0])
        buf.Push([3.0, 4.0])
        buf.Push([5.0, 6.0])
        np.testing.assert_array_equal(buf.Ordered(), [[3.0, 4.0], [5.0, 6.0]])

    def test_complex_entries(self):
        buf = RingBuffer(2, dtype=np.complex128)
        buf.Push(1.0 + 2.0j)
        assert buf.Ordered()[0] == 1.0 + 2.0j

    def test_ordered_is_copy(self):
        buf = RingBuffer(2)
        buf.Push(1.0)
        buf.Ordered()[0] = 5.0
        assert buf.buffer[0] == 1.0

    def test_clear(self):
        buf = RingBuffer(2)
        buf.Push(1.0)
        buf.Push(2.0)
        buf.Clear()
        assert len(buf) == 0
        buf.Push(3.0)
        np.testing.assert_array_equal(buf.Ordered(), [3.0])

    @pytest.mark.parametrize('capacity', [0, -1])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValueError):
            RingBuffer(capacity)
