""" Conversions between user facing sequence data and the packed arrays
used by the likelihood machinery.

User facing observations are integer arrays of shape (K, N, R), or (K, N)
for a single channel, with negative values for missing observations.
"""
from itertools import product

import numpy as np


def pack_observations(observations, n_symbols):
    """Packed observation array for the forward-backward recursions.

    Parameters
    ----------
    observations : array-like of int, shape=(K, N, R) or (K, N)
        Symbols ``0..n_symbols[r]-1``, negative for missing.
    n_symbols : array-like of int, shape=(R,)
        Alphabet size of each channel.

    Returns
    -------
    obs : np.array of int64, shape=(K, N, R)
        Missing observations of channel ``r`` are coded ``n_symbols[r]``.
    """
    obs = np.array(observations, dtype=np.int64)
    if obs.ndim == 2:
        obs = obs[:, :, np.newaxis]
    if obs.ndim != 3:
        raise ValueError("observations must have shape (K, N, R) or (K, N), got {}".format(obs.shape))

    n_symbols = np.asarray(n_symbols, dtype=np.int64).ravel()
    if len(n_symbols) != obs.shape[2]:
        raise ValueError("Number of channels defined by n_symbols ({}) differs from the one "
                         "defined by observations ({})".format(len(n_symbols), obs.shape[2]))

    for r, n_sym in enumerate(n_symbols):
        channel = obs[:, :, r]
        if np.any(channel >= n_sym):
            raise ValueError("Channel {} contains symbols outside 0..{}".format(r, n_sym - 1))
        channel[channel < 0] = n_sym

    return obs


def pack_emission(emission_matrices, n_symbols):
    """Stack per-channel emission matrices into the padded (M, S+1, R)
    array, ``S = max(n_symbols)``.

    Parameters
    ----------
    emission_matrices : list of array-like, length R
        Emission matrix of each channel, shape (M, n_symbols[r]).
    n_symbols : array-like of int, shape=(R,)

    Returns
    -------
    emission : np.array, shape=(M, S+1, R)
        Entries outside a channel's alphabet are 1, so a missing observation
        has probability one in every state.
    """
    n_symbols = np.asarray(n_symbols, dtype=np.int64).ravel()
    if len(emission_matrices) != len(n_symbols):
        raise ValueError("Expected {} emission matrices, got {}".format(len(n_symbols), len(emission_matrices)))

    M = np.shape(emission_matrices[0])[0]
    emission = np.ones(shape=(M, n_symbols.max() + 1, len(n_symbols)))
    for r, matrix in enumerate(emission_matrices):
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (M, n_symbols[r]):
            raise ValueError("Emission matrix of channel {} must have shape ({}, {}), got {}".format(
                r, M, n_symbols[r], matrix.shape))
        emission[:, :n_symbols[r], r] = matrix

    return emission


def combine_channels(observations, n_symbols, all_combinations=False):
    """Merge multichannel observations into a single channel.

    Every combination of per-channel symbols becomes one symbol of the new
    alphabet.  A time point missing in any channel is missing in the result.

    Parameters
    ----------
    observations : array-like of int, shape=(K, N, R)
        Negative values are missing.
    n_symbols : array-like of int, shape=(R,)
    all_combinations : bool, False
        Keep every possible combination in the alphabet.  Otherwise only
        combinations that occur in the data are kept.

    Returns
    -------
    combined : np.array of int64, shape=(K, N)
        Single channel symbols, -1 for missing.
    alphabet : list of tuple
        Per-channel symbols of each combined symbol, the first channel
        varying fastest.

    Examples
    --------
    >>> obs = np.array([[[0, 1], [1, 1], [0, -1]]])
    >>> combined, alphabet = combine_channels(obs, [2, 2])
    >>> combined
    array([[ 0,  1, -1]])
    >>> alphabet
    [(0, 1), (1, 1)]
    """
    obs = np.asarray(observations, dtype=np.int64)
    if obs.ndim != 3:
        raise ValueError("observations must have shape (K, N, R), got {}".format(obs.shape))
    n_symbols = np.asarray(n_symbols, dtype=np.int64).ravel()
    if len(n_symbols) != obs.shape[2]:
        raise ValueError("Number of channels defined by n_symbols differs from the one defined by observations")
    if np.any(obs >= n_symbols):
        raise ValueError("observations contain symbols outside the alphabets")

    missing = np.any(obs < 0, axis=2)
    radix = np.concatenate(([1], np.cumprod(n_symbols)[:-1]))
    codes = np.where(missing, -1, np.sum(np.clip(obs, 0, None) * radix, axis=2))

    # expand.grid order: first channel fastest
    full_alphabet = [tuple(reversed(symbols)) for symbols in product(*[range(n) for n in reversed(n_symbols)])]

    if all_combinations:
        return codes, full_alphabet

    used = np.unique(codes[~missing])
    relabel = np.full(len(full_alphabet), -1, dtype=np.int64)
    relabel[used] = np.arange(len(used))
    combined = np.where(missing, -1, relabel[np.clip(codes, 0, None)])

    return combined, [full_alphabet[code] for code in used]
