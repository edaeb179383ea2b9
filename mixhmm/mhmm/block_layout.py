""" Bookkeeping for the partition of the hidden states into mixture
blocks (clusters).
"""
import numpy as np


class BlockLayout():
    """Contiguous partition of ``M`` hidden states into ``J`` blocks.

    Parameters
    ----------
    n_states : array-like of int, shape=(J,)
        Number of hidden states in each block.  Block ``j`` covers the
        states ``offsets[j]:offsets[j+1]``.

    Attributes
    ----------
    n_blocks : int
        Number of blocks ``J``.
    n_total : int
        Total number of states ``M``.
    offsets : np.array, shape=(J+1,)
        Cumulative block boundaries, starting at zero.
    block_index : np.array, shape=(M,)
        Block of each state.
    membership : np.array, shape=(M, J)
        Indicator matrix, ``membership[s, j] == 1`` iff state ``s`` is in
        block ``j``.

    Examples
    --------
    >>> layout = BlockLayout([2, 3])
    >>> layout.state_range(1)
    slice(2, 5, None)
    >>> layout.block_of(4)
    1
    """

    def __init__(self, n_states):
        n_states = np.asarray(n_states, dtype=np.int64).ravel()
        if n_states.size == 0:
            raise ValueError("At least one block is required")
        if np.any(n_states < 1):
            raise ValueError("Every block needs at least one state")

        self.n_states = n_states
        self.n_blocks = len(n_states)
        self.offsets = np.concatenate(([0], np.cumsum(n_states)))
        self.n_total = int(self.offsets[-1])
        self.block_index = np.repeat(np.arange(self.n_blocks), n_states)

        self.membership = np.zeros(shape=(self.n_total, self.n_blocks))
        self.membership[np.arange(self.n_total), self.block_index] = 1

    def state_range(self, block):
        return slice(int(self.offsets[block]), int(self.offsets[block + 1]))

    def block_of(self, state):
        if not 0 <= state < self.n_total:
            raise ValueError("State {} outside of 0..{}".format(state, self.n_total - 1))
        return int(self.block_index[state])

    def broadcast(self, weights):
        """Expand per-block values of shape (..., J) to per-state values of
        shape (..., M)."""
        return np.asarray(weights)[..., self.block_index]

    def block_diagonal_mask(self):
        mask = np.zeros(shape=(self.n_total, self.n_total), dtype=bool)
        for block in range(self.n_blocks):
            states = self.state_range(block)
            mask[states, states] = True
        return mask

    def __iter__(self):
        for block in range(self.n_blocks):
            yield self.state_range(block)

    def __len__(self):
        return self.n_blocks

    def __repr__(self):
        return "BlockLayout({})".format(self.n_states.tolist())
