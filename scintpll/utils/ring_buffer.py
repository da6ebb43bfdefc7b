"""**ring_buffer.py**

======  ============================================================================================
file    scintpll/utils/ring_buffer.py
brief   Fixed capacity circular buffer for sliding window estimators.
date    March 2025
======  ============================================================================================
"""

import numpy as np

class RingBuffer:
    """
    Fixed capacity circular buffer of scalars or equally sized vectors. Memory is allocated once
    and reused, the oldest entry is overwritten when the buffer is full.
    """

    __slots__ = 'capacity', 'buffer', 'write_ptr', 'count'
    capacity  : int             # maximum number of entries
    buffer    : np.ndarray      # storage, first axis is the entry index
    write_ptr : int             # index the next entry is written to
    count     : int             # number of valid entries (<= capacity)

    def __init__(self, capacity: int, shape: tuple=(), dtype=np.double):
        """
        Constructor for RingBuffer class

        Parameters
        ----------
        capacity : int
            Maximum number of entries
        shape : tuple, optional
            Shape of each entry, by default () (scalars)
        dtype : np.dtype, optional
            Entry data type, by default np.double

        Raises
        ------
        ValueError
            Non-positive capacity
        """
        if capacity <= 0:
            raise ValueError(f"RingBuffer capacity of {capacity} is not valid.")
        self.capacity  = int(capacity)
        self.buffer    = np.zeros((self.capacity,) + tuple(shape), dtype=dtype)
        self.write_ptr = 0
        self.count     = 0
        return

    def __len__(self):
        return self.count

    @property
    def is_full(self) -> bool:
        return self.count == self.capacity

    def Push(self, value):
        """
        Push a new entry, overwriting the oldest one when full

        Parameters
        ----------
        value : scalar | np.ndarray
            New entry
        """
        self.buffer[self.write_ptr] = value
        self.write_ptr += 1
        self.write_ptr %= self.capacity
        if self.count < self.capacity:
            self.count += 1
        return

    def Ordered(self) -> np.ndarray:
        """
        Copy of the valid entries, oldest first

        Returns
        -------
        np.ndarray
            Entries in chronological order
        """
        if self.count < self.capacity:
            return self.buffer[:self.count].copy()
        return np.concatenate((self.buffer[self.write_ptr:], self.buffer[:self.write_ptr]))

    def Clear(self):
        self.write_ptr = 0
        self.count     = 0
        return
