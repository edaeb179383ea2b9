import os
import numpy as np
from numba import njit
from numba import config

if os.getenv("PYTEST_DISABLE_JIT") == "1":
       config.DISABLE_JIT = True


@njit(fastmath=True)
def jit_emission_products(emission, obs):
    K, N, R = obs.shape
    M = emission.shape[0]

    # Joint probability of the multichannel symbol, for each state
    emis = np.ones(shape=(K, N, M))
    for k in range(K):
        for t in range(N):
            for r in range(R):
                for m in range(M):
                    emis[k, t, m] *= emission[m, obs[k, t, r], r]

    return emis

@njit(fastmath=True)
def jit_forward(transition, emission, init, obs):
    K, N, _ = obs.shape
    M = transition.shape[0]

    emis = jit_emission_products(emission, obs)

    alpha = np.zeros(shape=(K, N, M))
    # Normalizing constant
    scales = np.zeros(shape=(K, N))

    for k in range(K):
        alpha[k, 0, :] = init[k, :] * emis[k, 0, :]
        scales[k, 0] = alpha[k, 0, :].sum()
        alpha[k, 0, :] /= scales[k, 0]

        for t in range(1, N):
            for j in range(M):
                alpha[k, t, j] = np.sum(alpha[k, t-1, :] * transition[:, j]) * emis[k, t, j]
            scales[k, t] = alpha[k, t, :].sum()
            alpha[k, t, :] /= scales[k, t]

    return alpha, scales

@njit(fastmath=True)
def jit_backward(transition, emission, obs, scales):
    K, N, _ = obs.shape
    M = transition.shape[0]

    emis = jit_emission_products(emission, obs)

    beta = np.ones(shape=(K, N, M))

    # Recursion, reusing the forward normalization
    for k in range(K):
        for t in range(N-2, -1, -1):
            temp = emis[k, t+1, :] * beta[k, t+1, :] / scales[k, t+1]
            for i in range(M):
                beta[k, t, i] = np.sum(transition[i, :] * temp)

    return beta
