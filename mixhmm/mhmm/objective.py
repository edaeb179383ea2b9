""" Negative log-likelihood and analytic gradient of a mixture hidden
Markov model with covariate dependent mixture probabilities.

The gradient is taken with respect to the free parameters of the model,
flattened in the order

    [transition | emission | initial | coefficients]

where every probability row is parametrized through a softmax, so the
derivative of a row ``p`` with respect to its own unconstrained coordinates
is ``diag(p) - p p^T``.  The coefficients enter directly (multinomial logit,
first block is the reference).
"""
from collections import namedtuple

import numpy as np

from .block_layout import BlockLayout
from .numba_utilities import jit_forward
from .numba_utilities import jit_backward


ObjectiveResult = namedtuple('ObjectiveResult', ['objective', 'gradient'])

MAX_FLOAT = np.finfo(np.float64).max


def mixture_weights(X, coefficients):
    r""" Mixture probabilities of each subject, softmax of ``X coefficients``.

    Parameters
    ----------
    X : np.array, shape=(K, q)
        Covariates.
    coefficients : np.array, shape=(q, J)
        Logit coefficients.  The first column is the reference and is
        always treated as zero.

    Returns
    -------
    weights : np.array, shape=(K, J), None
        Rows sum to one.  ``None`` if the exponentiated linear predictor
        overflows.
    """
    coefs = np.array(coefficients, dtype=np.float64)
    coefs[:, 0] = 0
    with np.errstate(over='ignore', invalid='ignore'):
        weights = np.exp(np.dot(X, coefs))
    if not np.all(np.isfinite(weights)):
        return None

    weights /= weights.sum(axis=1, keepdims=True)
    return weights


def subject_initial_probs(init, weights, layout):
    """Initial state distribution of each subject, shape (K, M)."""
    return init[np.newaxis, :] * layout.broadcast(weights)


def simplex_jacobian(p, free=None):
    r""" Jacobian of a softmax parametrized probability row.

    Parameters
    ----------
    p : np.array, shape=(n,)
        Probability vector.
    free : np.array of bool, shape=(n,), None
        Free coordinates; the rows of the Jacobian to keep.  All rows if
        `None`.

    Returns
    -------
    jacobian : np.array, shape=(n_free, n)
        :math:`(\mathrm{diag}(p) - p p^T)` restricted to the free rows.
    """
    p = np.asarray(p, dtype=np.float64)
    jacobian = np.diag(p) - np.outer(p, p)
    if free is None:
        return jacobian
    return jacobian[np.asarray(free, dtype=bool)]


def channel_emission_probs(emission, obs):
    """Emission probability of the observed symbol in every channel, shape
    (R, K, N, M)."""
    R = obs.shape[2]
    return np.stack([emission[:, obs[:, :, r], r].transpose(1, 2, 0) for r in range(R)])


def transition_gradient(transition, trans_mask, layout, emis, alpha, beta, scales):
    weighted = emis[:, 1:] * beta[:, 1:] / scales[:, 1:, np.newaxis]
    raw = np.einsum('kti,ktj->ij', alpha[:, :-1], weighted)

    grads = []
    for states in layout:
        for i in range(states.start, states.stop):
            free = trans_mask[i, states]
            if free.any():
                jacobian = simplex_jacobian(transition[i, states], free)
                grads.append(jacobian.dot(raw[i, states]))

    return np.concatenate(grads) if grads else np.zeros(0)


def emission_gradient(transition, emission, emiss_mask, n_symbols, obs,
                      channel_probs, init_k, alpha, beta, scales):
    M = transition.shape[0]

    # Probability of reaching each state at t (before emitting), times the
    # scaled backward term
    reach = np.empty_like(alpha)
    reach[:, 0] = init_k
    reach[:, 1:] = np.einsum('kti,ij->ktj', alpha[:, :-1], transition)
    reach *= beta / scales[:, :, np.newaxis]

    grads = []
    for r, n_sym in enumerate(n_symbols):
        other = np.prod(np.delete(channel_probs, r, axis=0), axis=0)
        # Missing symbols (== n_sym) match no column
        onehot = (obs[:, :, r, np.newaxis] == np.arange(n_sym)).astype(np.float64)
        raw = np.einsum('kti,ktv->iv', reach * other, onehot)

        for i in range(M):
            free = emiss_mask[i, :n_sym, r]
            if free.any():
                jacobian = simplex_jacobian(emission[i, :n_sym, r], free)
                grads.append(jacobian.dot(raw[i]))

    return np.concatenate(grads) if grads else np.zeros(0)


def initial_gradient(init, init_mask, layout, weights, emis, beta, scales):
    u0 = emis[:, 0] * beta[:, 0] / scales[:, 0, np.newaxis]
    raw = np.sum(u0 * layout.broadcast(weights), axis=0)

    grads = []
    for states in layout:
        free = init_mask[states]
        if free.any():
            jacobian = simplex_jacobian(init[states], free)
            grads.append(jacobian.dot(raw[states]))

    return np.concatenate(grads) if grads else np.zeros(0)


def coefficient_gradient(X, layout, weights, init_k, emis, beta, scales):
    u = emis[:, 0] * beta[:, 0] / scales[:, 0, np.newaxis] * init_k
    by_block = u.dot(layout.membership)
    contrib = by_block - weights * u.sum(axis=1, keepdims=True)

    # Column j of the reference-free coefficients, covariates inner
    return np.dot(X.T, contrib)[:, 1:].ravel(order='F')


def _as_mask(mask):
    return np.asarray(mask) != 0


def check_inputs(transition, emission, init, obs, n_symbols, coefficients, X, n_states,
                 trans_mask=None, emiss_mask=None, init_mask=None):
    """Validate shapes and mutual consistency of the model arrays.

    Returns the block layout; raises `ValueError` on the first violation.
    """
    if transition.ndim != 2 or transition.shape[0] != transition.shape[1]:
        raise ValueError("transition must be a square matrix, got shape {}".format(transition.shape))
    M = transition.shape[0]
    if init.shape != (M,):
        raise ValueError("init must have shape ({},), got {}".format(M, init.shape))

    layout = BlockLayout(n_states)
    if layout.n_total != M:
        raise ValueError("n_states sums to {} but the model has {} states".format(layout.n_total, M))

    if obs.ndim != 3:
        raise ValueError("obs must have shape (K, N, R), got {}".format(obs.shape))
    K, N, R = obs.shape
    if K < 1 or N < 1:
        raise ValueError("obs must contain at least one subject and one time step")
    if n_symbols.shape != (R,):
        raise ValueError("n_symbols must have one entry per channel ({}), got {}".format(R, n_symbols.shape))
    if np.any(n_symbols < 1):
        raise ValueError("Every channel needs at least one symbol")

    if emission.ndim != 3 or emission.shape[0] != M or emission.shape[2] != R:
        raise ValueError("emission must have shape ({}, S+1, {}), got {}".format(M, R, emission.shape))
    if emission.shape[1] < n_symbols.max() + 1:
        raise ValueError("emission has {} symbol columns, at least {} are needed "
                         "(alphabet plus the missing symbol)".format(emission.shape[1], n_symbols.max() + 1))
    if obs.min() < 0 or np.any(obs.max(axis=(0, 1)) > n_symbols):
        raise ValueError("obs symbols must lie in 0..n_symbols[r] (n_symbols[r] marks missing)")

    if coefficients.ndim != 2 or coefficients.shape[1] != layout.n_blocks:
        raise ValueError("coefficients must have shape (q, {}), got {}".format(layout.n_blocks, coefficients.shape))
    if X.shape != (K, coefficients.shape[0]):
        raise ValueError("X must have shape ({}, {}), got {}".format(K, coefficients.shape[0], X.shape))

    if trans_mask is not None:
        if trans_mask.shape != (M, M):
            raise ValueError("trans_mask must have shape ({0}, {0}), got {1}".format(M, trans_mask.shape))
        if np.any(trans_mask & ~layout.block_diagonal_mask()):
            raise ValueError("trans_mask marks transitions between different blocks as free")
    if emiss_mask is not None:
        if emiss_mask.shape != (M, emission.shape[1] - 1, R):
            raise ValueError("emiss_mask must have shape ({}, {}, {}), got {}".format(
                M, emission.shape[1] - 1, R, emiss_mask.shape))
        for r, n_sym in enumerate(n_symbols):
            if np.any(emiss_mask[:, n_sym:, r]):
                raise ValueError("emiss_mask marks symbols outside the alphabet of channel {} as free".format(r))
    if init_mask is not None and init_mask.shape != (M,):
        raise ValueError("init_mask must have shape ({},), got {}".format(M, init_mask.shape))

    return layout


def _prepare(transition, emission, init, obs, n_symbols, coefficients, X):
    return (np.ascontiguousarray(transition, dtype=np.float64),
            np.ascontiguousarray(emission, dtype=np.float64),
            np.ascontiguousarray(init, dtype=np.float64),
            np.ascontiguousarray(obs, dtype=np.int64),
            np.asarray(n_symbols, dtype=np.int64).ravel(),
            np.asarray(coefficients, dtype=np.float64),
            np.asarray(X, dtype=np.float64))


def objective(transition, emission, init, obs, trans_mask, emiss_mask, init_mask,
              n_symbols, coefficients, X, n_states):
    r""" Negative log-likelihood of a mixture HMM and its gradient.

    Parameters
    ----------
    transition : np.array, shape=(M, M)
        Block diagonal, row stochastic transition matrix.
    emission : np.array, shape=(M, S+1, R)
        Emission probabilities per channel.  Columns at and beyond
        ``n_symbols[r]`` hold 1 (missing observation).
    init : np.array, shape=(M,)
        Initial probabilities, each block slice sums to one.
    obs : np.array of int, shape=(K, N, R)
        Observed symbols, ``n_symbols[r]`` codes a missing value.
    trans_mask : np.array, shape=(M, M)
        Nonzero for free transition probabilities.
    emiss_mask : np.array, shape=(M, S, R)
        Nonzero for free emission probabilities.
    init_mask : np.array, shape=(M,)
        Nonzero for free initial probabilities.
    n_symbols : np.array of int, shape=(R,)
        Alphabet size of each channel.
    coefficients : np.array, shape=(q, J)
        Mixture logit coefficients, first column fixed to zero.
    X : np.array, shape=(K, q)
        Covariates.
    n_states : np.array of int, shape=(J,)
        Number of states in each mixture block.

    Returns
    -------
    result : ObjectiveResult
        ``objective`` is minus the total log-likelihood, ``gradient`` its
        gradient with length
        ``|trans_mask| + |emiss_mask| + |init_mask| + (J-1) q``.
        If the mixture weights overflow, ``objective`` is the largest finite
        float and every gradient entry the most negative finite float.

    Notes
    -----
    Complexity :math:`\mathcal{O}(KNM^2 + KNMR)`.
    """
    transition, emission, init, obs, n_symbols, coefficients, X = \
        _prepare(transition, emission, init, obs, n_symbols, coefficients, X)
    trans_mask = _as_mask(trans_mask)
    emiss_mask = _as_mask(emiss_mask)
    init_mask = _as_mask(init_mask)
    layout = check_inputs(transition, emission, init, obs, n_symbols, coefficients, X, n_states,
                          trans_mask, emiss_mask, init_mask)

    n_grad = (trans_mask.sum() + emiss_mask.sum() + init_mask.sum()
              + (layout.n_blocks - 1) * coefficients.shape[0])

    weights = mixture_weights(X, coefficients)
    if weights is None:
        return ObjectiveResult(MAX_FLOAT, np.full(n_grad, -MAX_FLOAT))

    init_k = subject_initial_probs(init, weights, layout)

    alpha, scales = jit_forward(transition, emission, init_k, obs)
    beta = jit_backward(transition, emission, obs, scales)

    channel_probs = channel_emission_probs(emission, obs)
    emis = np.prod(channel_probs, axis=0)

    grad = np.concatenate([
        transition_gradient(transition, trans_mask, layout, emis, alpha, beta, scales),
        emission_gradient(transition, emission, emiss_mask, n_symbols, obs,
                          channel_probs, init_k, alpha, beta, scales),
        initial_gradient(init, init_mask, layout, weights, emis, beta, scales),
        coefficient_gradient(X, layout, weights, init_k, emis, beta, scales),
    ])

    ll = np.sum(np.log(scales))

    return ObjectiveResult(-ll, -grad)


def _forward(transition, emission, init, obs, n_symbols, coefficients, X, n_states):
    transition, emission, init, obs, n_symbols, coefficients, X = \
        _prepare(transition, emission, init, obs, n_symbols, coefficients, X)
    layout = check_inputs(transition, emission, init, obs, n_symbols, coefficients, X, n_states)

    weights = mixture_weights(X, coefficients)
    if weights is None:
        raise ValueError("Mixture probabilities overflow for the given coefficients")

    init_k = subject_initial_probs(init, weights, layout)
    alpha, scales = jit_forward(transition, emission, init_k, obs)
    return layout, alpha, scales


def log_likelihood(transition, emission, init, obs, n_symbols, coefficients, X, n_states):
    """Log-likelihood of each subject, shape (K,).

    Arguments as for `objective`, without the masks.
    """
    _, _, scales = _forward(transition, emission, init, obs, n_symbols, coefficients, X, n_states)
    return np.sum(np.log(scales), axis=1)


def posterior_cluster_probs(transition, emission, init, obs, n_symbols, coefficients, X, n_states):
    """Posterior probability of each mixture block given the complete
    sequence, shape (K, J).

    Transitions never leave a block, so the filtered state distribution at
    the last time step summed over a block is the posterior of that block.
    """
    layout, alpha, _ = _forward(transition, emission, init, obs, n_symbols, coefficients, X, n_states)
    return alpha[:, -1].dot(layout.membership)
