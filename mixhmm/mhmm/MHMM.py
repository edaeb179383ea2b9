import warnings
from collections import namedtuple

import numpy as np
from scipy.linalg import block_diag
from scipy.optimize import minimize
from scipy.special import softmax
import matplotlib.pyplot as plt
from sklearn.base import BaseEstimator
from joblib import Parallel, delayed

from .block_layout import BlockLayout
from .channels import pack_observations
from .channels import pack_emission
from .objective import objective
from .objective import mixture_weights
from .objective import log_likelihood
from .objective import posterior_cluster_probs


# Tolerance on probabilities summing to one
SUM_TOL = 1E-8


ModelArrays = namedtuple('ModelArrays', ['transition', 'emission', 'init',
                                         'trans_mask', 'emiss_mask', 'init_mask',
                                         'trans_support', 'emiss_support', 'init_support',
                                         'n_covariates'])


def free_entries(p):
    """Free coordinates of a probability row: every positive entry except the
    largest one, which is the fixed reference."""
    free = np.asarray(p) > 0
    free[np.argmax(p)] = False
    return free


def row_softmax(support, free, theta):
    logits = np.where(support, 0.0, -np.inf)
    logits[free] = theta
    return softmax(logits)


class MHMM(BaseEstimator):
    """Mixture Hidden Markov Model (MHMM) for multichannel categorical
    sequences, with covariate dependent mixture probabilities.

    Each cluster is a separate HMM.  The clusters are stacked into one
    block diagonal model; the probability of a subject belonging to a
    cluster follows a multinomial logit model of its covariates, with the
    first cluster as the reference.  Parameters are estimated by direct
    maximization of the log-likelihood using its analytic gradient.

    Parameters
    ----------
    transition_matrix : list of np.array
        Transition matrix of each cluster, shape (m_j, m_j).
    emission_matrix : list of np.array, or list of lists of np.array
        Emission matrix of each cluster, shape (m_j, n_symbols), or for
        multichannel data a list with one such matrix per channel.
    initial_probs : list of np.array
        Initial state probabilities of each cluster, shape (m_j,).
    coefficients : np.array, None
        Logit coefficients of shape (q, n_clusters); the first column is
        set to zero.  If `None`, zeros with as many rows as covariates.
    cluster_names : list of str, None
        Defaults to "Cluster 1", "Cluster 2", ...
    state_names : list of lists of str, None
        Hidden state names of each cluster.  Defaults to "1", "2", ...
    channel_names : list of str, None
        Defaults to "Observations" for a single channel, "1", "2", ...
        otherwise.
    n_restarts : int, (Z+)
        Number of extra optimizations started from randomly jittered
        parameters, in search of the global optimum.
    restart_scale : float, (R+)
        Standard deviation of the jitter of the unconstrained parameters.
    method : str
        Optimization method passed to `scipy.optimize.minimize`.  Must use
        the gradient.
    max_iter : int, (Z+)
        Maximum number of optimizer iterations per restart.
    tol : float, (R+)
        Optimizer tolerance.
    n_jobs : int, None
        Number of parallel restarts (`joblib`).  `None` or 1 runs the
        restarts sequentially.
    random_state : int, None
        Seed for the restart jitter.
    verbose : bool, True
        Print progress.

    Attributes
    ----------
    n_clusters : int
    n_states : np.array of int
        Number of hidden states in each cluster.
    n_channels : int
    n_symbols : np.array of int
        Alphabet size of each channel.
    layout : BlockLayout
        Partition of the stacked states into clusters.
    log_likelihood_ : float, None
        Log-likelihood of the fitted model.
    results_ : list, None
        `(log_likelihood, OptimizeResult)` of every restart, best first.

    Examples
    --------
    >>> transition = [np.array([[0.9, 0.1], [0.2, 0.8]]), np.array([[1.0]])]
    >>> emission = [np.array([[0.7, 0.3], [0.1, 0.9]]), np.array([[0.5, 0.5]])]
    >>> initial = [np.array([0.6, 0.4]), np.array([1.0])]
    >>> mhmm = MHMM(transition, emission, initial, verbose=False)
    >>> obs, states, clusters = mhmm.generate(50, 10, random_state=1)
    >>> mhmm.fit(obs).log_likelihood_ >= mhmm.results_[-1][0]
    True
    """

    def __init__(self,
                 transition_matrix,
                 emission_matrix,
                 initial_probs,
                 coefficients=None,
                 cluster_names=None,
                 state_names=None,
                 channel_names=None,
                 n_restarts=0,
                 restart_scale=0.5,
                 method='L-BFGS-B',
                 max_iter=1000,
                 tol=1E-8,
                 n_jobs=None,
                 random_state=None,
                 verbose=True):

        self.transition_matrix = transition_matrix
        self.emission_matrix = emission_matrix
        self.initial_probs = initial_probs
        self.coefficients = coefficients

        self.cluster_names = cluster_names
        self.state_names = state_names
        self.channel_names = channel_names

        self.n_restarts = n_restarts
        self.restart_scale = restart_scale
        self.method = method
        self.max_iter = max_iter
        self.tol = tol
        self.n_jobs = n_jobs
        self.random_state = random_state

        self.verbose = verbose

        self.log_likelihood_ = None
        self.results_ = None

        self.initialize_model()

    def initialize_model(self):
        self._check_clusters()
        self._check_transitions()
        self._check_emissions()
        self._check_initial_probs()
        self._check_names()
        self.layout = BlockLayout(self.n_states)

    def _check_clusters(self):
        if not isinstance(self.transition_matrix, (list, tuple)):
            raise ValueError("transition_matrix is not a list.")
        self.n_clusters = len(self.transition_matrix)
        if self.n_clusters == 0:
            raise ValueError("transition_matrix is empty.")
        if len(self.emission_matrix) != self.n_clusters or len(self.initial_probs) != self.n_clusters:
            raise ValueError("Unequal list lengths of transition_matrix, emission_matrix and initial_probs.")

    def _check_transitions(self):
        n_states = []
        for i, transition in enumerate(self.transition_matrix):
            transition = np.asarray(transition, dtype=np.float64)
            if transition.ndim != 2 or transition.shape[0] != transition.shape[1]:
                raise ValueError("Transition matrices must be square matrices (cluster {}).".format(i + 1))
            if np.any(transition < 0) or not np.allclose(transition.sum(axis=1), 1, rtol=0, atol=SUM_TOL):
                raise ValueError("Row sums of the transition probabilities in cluster {} "
                                 "do not sum to one.".format(i + 1))
            n_states.append(transition.shape[0])
        self.n_states = np.array(n_states, dtype=np.int64)

    @staticmethod
    def _is_channel_list(emission):
        return isinstance(emission, (list, tuple)) and len(emission) > 0 and np.ndim(emission[0]) == 2

    def _cluster_emissions(self, i):
        emission = self.emission_matrix[i]
        if self._is_channel_list(emission):
            return list(emission)
        return [emission]

    def _check_emissions(self):
        self._single_matrix_input = not any(self._is_channel_list(emission) for emission in self.emission_matrix)

        emissions = [self._cluster_emissions(i) for i in range(self.n_clusters)]
        self.n_channels = len(emissions[0])
        if any(len(channels) != self.n_channels for channels in emissions):
            raise ValueError("Number of channels defined by emission matrices differ from each other.")

        self.n_symbols = np.array([np.shape(matrix)[1] if np.ndim(matrix) == 2 else -1
                                   for matrix in emissions[0]], dtype=np.int64)

        for i, channels in enumerate(emissions):
            for r, matrix in enumerate(channels):
                matrix = np.asarray(matrix, dtype=np.float64)
                if matrix.ndim != 2:
                    raise ValueError("Object provided in emission_matrix for cluster {} and channel {} "
                                     "is not a matrix.".format(i + 1, r + 1))
                if matrix.shape[0] != self.n_states[i]:
                    raise ValueError("Number of rows in emission_matrix of cluster {} is not equal "
                                     "to the number of states.".format(i + 1))
                if matrix.shape[1] != self.n_symbols[r]:
                    raise ValueError("Number of columns in emission_matrix of cluster {} is not equal "
                                     "to the number of symbols.".format(i + 1))
                if np.any(matrix < 0) or not np.allclose(matrix.sum(axis=1), 1, rtol=0, atol=SUM_TOL):
                    raise ValueError("Emission probabilities in emission_matrix of cluster {} "
                                     "do not sum to one.".format(i + 1))

    def _check_initial_probs(self):
        for i, initial in enumerate(self.initial_probs):
            initial = np.asarray(initial, dtype=np.float64)
            if initial.shape != (self.n_states[i],):
                raise ValueError("Initial probabilities of cluster {} must be a vector of length {}.".format(
                    i + 1, self.n_states[i]))
            if np.any(initial < 0) or not np.isclose(initial.sum(), 1, rtol=0, atol=SUM_TOL):
                raise ValueError("Initial probabilities in cluster {} do not sum to one.".format(i + 1))

    def _check_names(self):
        if self.cluster_names is None:
            self.cluster_names = ["Cluster {}".format(i + 1) for i in range(self.n_clusters)]
        elif len(self.cluster_names) != self.n_clusters:
            warnings.warn("The length of argument cluster_names does not match the number of clusters. "
                          "Names were not used.")
            self.cluster_names = ["Cluster {}".format(i + 1) for i in range(self.n_clusters)]

        if self.state_names is None:
            self.state_names = [[str(s + 1) for s in range(m)] for m in self.n_states]
        else:
            for i, m in enumerate(self.n_states):
                if len(self.state_names[i]) != m:
                    raise ValueError("Length of state_names for cluster {} is not equal to the number "
                                     "of hidden states.".format(i + 1))

        if self.channel_names is None:
            self.channel_names = self._default_channel_names()
        elif len(self.channel_names) != self.n_channels:
            warnings.warn("The length of argument channel_names does not match the number of channels. "
                          "Names were not used.")
            self.channel_names = self._default_channel_names()

    def _default_channel_names(self):
        if self.n_channels == 1:
            return ["Observations"]
        return [str(r + 1) for r in range(self.n_channels)]

    @property
    def state_labels(self):
        """Names of the stacked hidden states, prefixed with the cluster name
        when state names repeat across clusters."""
        labels = [name for names in self.state_names for name in names]
        if len(set(labels)) != len(labels):
            labels = ["{}:{}".format(self.cluster_names[i], name)
                      for i, names in enumerate(self.state_names) for name in names]
        return labels

    def _coefficient_matrix(self, n_covariates):
        if self.coefficients is None:
            return np.zeros(shape=(n_covariates, self.n_clusters))
        coefficients = np.array(self.coefficients, dtype=np.float64)
        if coefficients.shape != (n_covariates, self.n_clusters):
            raise ValueError("Wrong dimensions of coefficients: expected {}, got {}.".format(
                (n_covariates, self.n_clusters), coefficients.shape))
        coefficients[:, 0] = 0
        return coefficients

    def _n_covariates(self):
        if self.coefficients is None:
            return 1
        return np.shape(self.coefficients)[0]

    def _covariates(self, covariates, n_sequences):
        if covariates is None:
            return np.ones(shape=(n_sequences, 1))
        covariates = np.asarray(covariates, dtype=np.float64)
        if covariates.ndim == 1:
            covariates = covariates[:, np.newaxis]
        if np.any(np.isnan(covariates)):
            raise ValueError("Missing cases are not allowed in covariates.")
        if covariates.shape[0] != n_sequences:
            raise ValueError("Number of subjects in data for covariates does not match the number "
                             "of subjects in the sequence data.")
        return covariates

    def model_arrays(self, n_covariates=None):
        """The stacked model: block diagonal transition matrix, padded
        emission array, concatenated initial probabilities, and the masks of
        free parameters."""
        if n_covariates is None:
            n_covariates = self._n_covariates()

        transition = block_diag(*[np.asarray(tm, dtype=np.float64) for tm in self.transition_matrix])
        emissions = [self._cluster_emissions(i) for i in range(self.n_clusters)]
        emission = pack_emission([np.vstack([np.asarray(channels[r], dtype=np.float64) for channels in emissions])
                                  for r in range(self.n_channels)], self.n_symbols)
        init = np.concatenate([np.asarray(ip, dtype=np.float64) for ip in self.initial_probs])

        M = self.layout.n_total
        trans_mask = np.zeros(shape=(M, M), dtype=bool)
        for i in range(M):
            trans_mask[i] = free_entries(transition[i])

        emiss_mask = np.zeros(shape=(M, emission.shape[1] - 1, self.n_channels), dtype=bool)
        emiss_support = np.zeros(shape=emiss_mask.shape, dtype=bool)
        for r, n_sym in enumerate(self.n_symbols):
            for i in range(M):
                emiss_mask[i, :n_sym, r] = free_entries(emission[i, :n_sym, r])
                emiss_support[i, :n_sym, r] = emission[i, :n_sym, r] > 0

        init_mask = np.zeros(shape=M, dtype=bool)
        for states in self.layout:
            init_mask[states] = free_entries(init[states])

        return ModelArrays(transition, emission, init,
                           trans_mask, emiss_mask, init_mask,
                           transition > 0, emiss_support, init > 0,
                           n_covariates)

    @property
    def n_parameters(self):
        """Number of free parameters (degrees of freedom) of the model."""
        return self._n_parameters(self._n_covariates())

    def _n_parameters(self, n_covariates):
        model = self.model_arrays(n_covariates)
        return int(model.trans_mask.sum() + model.emiss_mask.sum() + model.init_mask.sum()
                   + (self.n_clusters - 1) * model.n_covariates)

    def pack_parameters(self, model=None):
        """Unconstrained parameter vector, ordered as the gradient of
        `objective`."""
        if model is None:
            model = self.model_arrays()

        theta = []
        for i in range(len(model.init)):
            p = model.transition[i]
            theta.append(np.log(p[model.trans_mask[i]]) - np.log(p.max()))
        for r, n_sym in enumerate(self.n_symbols):
            for i in range(len(model.init)):
                p = model.emission[i, :n_sym, r]
                theta.append(np.log(p[model.emiss_mask[i, :n_sym, r]]) - np.log(p.max()))
        for states in self.layout:
            p = model.init[states]
            theta.append(np.log(p[model.init_mask[states]]) - np.log(p.max()))
        theta.append(self._coefficient_matrix(model.n_covariates)[:, 1:].ravel(order='F'))

        return np.concatenate(theta)

    def unpack_parameters(self, theta, model):
        """Probabilities and coefficients from an unconstrained vector.

        Returns
        -------
        transition, emission, init, coefficients : tuple
            Stacked model arrays, same shapes as in `model`.
        """
        M = len(model.init)
        pos = 0

        transition = np.zeros(shape=model.transition.shape)
        for i in range(M):
            n = model.trans_mask[i].sum()
            transition[i] = row_softmax(model.trans_support[i], model.trans_mask[i], theta[pos:pos+n])
            pos += n

        emission = model.emission.copy()
        for r, n_sym in enumerate(self.n_symbols):
            for i in range(M):
                free = model.emiss_mask[i, :n_sym, r]
                n = free.sum()
                emission[i, :n_sym, r] = row_softmax(model.emiss_support[i, :n_sym, r], free, theta[pos:pos+n])
                pos += n

        init = np.zeros(shape=M)
        for states in self.layout:
            free = model.init_mask[states]
            n = free.sum()
            init[states] = row_softmax(model.init_support[states], free, theta[pos:pos+n])
            pos += n

        coefficients = np.zeros(shape=(model.n_covariates, self.n_clusters))
        coefficients[:, 1:] = theta[pos:].reshape(model.n_covariates, self.n_clusters - 1, order='F')

        return transition, emission, init, coefficients

    def _set_model(self, transition, emission, init, coefficients):
        transition_matrix = []
        emission_matrix = []
        initial_probs = []
        for states in self.layout:
            transition_matrix.append(transition[states, states].copy())
            channels = [emission[states, :n_sym, r].copy() for r, n_sym in enumerate(self.n_symbols)]
            emission_matrix.append(channels[0] if self._single_matrix_input else channels)
            initial_probs.append(init[states].copy())

        self.set_params(transition_matrix=transition_matrix,
                        emission_matrix=emission_matrix,
                        initial_probs=initial_probs,
                        coefficients=coefficients)

    def objective_and_gradient(self, theta, obs, covariates, model):
        """Negative log-likelihood and gradient at the unconstrained
        parameters `theta`."""
        transition, emission, init, coefficients = self.unpack_parameters(theta, model)
        return objective(transition, emission, init, obs,
                         model.trans_mask, model.emiss_mask, model.init_mask,
                         self.n_symbols, coefficients, covariates, self.n_states)

    def fit(self, observations, covariates=None):
        """ Fit the MHMM to the observed sequences by maximum likelihood.

        Parameters
        ----------
        observations : np.array of int, shape (K, N, R) or (K, N)
            Observed symbols, negative for missing.
        covariates : np.array, shape (K, q), None
            Time-constant covariates of each subject.  If `None`, an
            intercept only model.
        """
        obs = pack_observations(observations, self.n_symbols)
        covariates = self._covariates(covariates, obs.shape[0])
        model = self.model_arrays(covariates.shape[1])
        theta = self.pack_parameters(model)

        if self.n_jobs is None or self.n_jobs == 1:
            results = self.sequential_fit(theta, obs, covariates, model)
        else:
            results = self.parallel_fit(theta, obs, covariates, model)
        self._fix_self_to_best_model(results, model)

        return self

    def _starting_points(self, theta):
        rng = np.random.RandomState(self.random_state)
        starts = [theta]
        for n_start in range(self.n_restarts):
            starts.append(theta + rng.normal(0, self.restart_scale, size=len(theta)))
        return starts

    def sequential_fit(self, theta, obs, covariates, model):
        results = []
        for start in self._starting_points(theta):
            results.append(self._minimize(self, start, obs, covariates, model))
        return results

    def parallel_fit(self, theta, obs, covariates, model):
        futures = []
        for start in self._starting_points(theta):
            futures.append(delayed(self._minimize)(self, start, obs, covariates, model))
        results = Parallel(n_jobs=self.n_jobs)(futures)
        return results

    @staticmethod
    def _minimize(self, theta, obs, covariates, model):
        result = minimize(self.objective_and_gradient, theta, args=(obs, covariates, model),
                          jac=True, method=self.method, tol=self.tol,
                          options={'maxiter': self.max_iter})
        if self.verbose:
            print("Log likelihood: {0:0.4f} after {1} iterations".format(-result.fun, result.nit))
        return (-result.fun, result)

    def _fix_self_to_best_model(self, results, model):
        self.results_ = sorted(results, key=lambda x: x[0], reverse=True)
        self.log_likelihood_, best = self.results_[0]
        if not best.success:
            warnings.warn("== Optimizer did not converge: {}".format(best.message))
        self._set_model(*self.unpack_parameters(best.x, model))
        if self.verbose:
            print("** Best log likelihood: {0:0.4f}".format(self.log_likelihood_))

    def _likelihood_inputs(self, observations, covariates):
        obs = pack_observations(observations, self.n_symbols)
        covariates = self._covariates(covariates, obs.shape[0])
        model = self.model_arrays(covariates.shape[1])
        return (model.transition, model.emission, model.init, obs, self.n_symbols,
                self._coefficient_matrix(covariates.shape[1]), covariates, self.n_states)

    def log_likelihood(self, observations, covariates=None):
        r""" Log likelihood of the sequences given the model parameters.

        Notes
        -----
        Complexity :math:`\mathcal{O}(KNM^2)`.
        """
        return float(np.sum(log_likelihood(*self._likelihood_inputs(observations, covariates))))

    def bic(self, observations, covariates=None):
        """Bayesian information criterion, with the number of non-missing
        observations averaged over channels as the sample size."""
        obs = pack_observations(observations, self.n_symbols)
        n_obs = np.sum(obs < self.n_symbols) / self.n_channels
        n_covariates = self._covariates(covariates, obs.shape[0]).shape[1]
        return (-2 * self.log_likelihood(observations, covariates)
                + np.log(n_obs) * self._n_parameters(n_covariates))

    def mixture_probabilities(self, covariates=None, n_sequences=1):
        """Prior cluster probabilities of each subject, shape (K, n_clusters)."""
        if covariates is not None:
            n_sequences = np.shape(covariates)[0]
        covariates = self._covariates(covariates, n_sequences)
        weights = mixture_weights(covariates, self._coefficient_matrix(covariates.shape[1]))
        if weights is None:
            raise ValueError("Mixture probabilities overflow for the given coefficients")
        return weights

    def posterior_cluster_probabilities(self, observations, covariates=None):
        """Probability of each cluster given the complete sequence, shape
        (K, n_clusters)."""
        return posterior_cluster_probs(*self._likelihood_inputs(observations, covariates))

    def most_probable_cluster(self, observations, covariates=None):
        return np.argmax(self.posterior_cluster_probabilities(observations, covariates), axis=1)

    def generate(self, n_sequences, length, covariates=None, random_state=None):
        """ Simulate sequences from the mixture model.

        Parameters
        ----------
        n_sequences : int
            Number of subjects, at least 2.
        length : int
            Length of each sequence.
        covariates : np.array, shape (n_sequences, q), None
        random_state : int, None

        Returns
        -------
        observations : np.array of int, shape (n_sequences, length, n_channels)
        states : np.array of int, shape (n_sequences, length)
            Stacked hidden state indices (see `state_labels`).
        clusters : np.array of int, shape (n_sequences,)
        """
        if n_sequences < 2:
            raise ValueError("Number of simulations (n_sequences) must be at least 2 for a mixture model.")

        rng = np.random.RandomState(random_state)
        weights = self.mixture_probabilities(self._covariates(covariates, n_sequences))
        model = self.model_arrays()
        M = self.layout.n_total

        observations = np.zeros(shape=(n_sequences, length, self.n_channels), dtype=np.int64)
        states = np.zeros(shape=(n_sequences, length), dtype=np.int64)
        clusters = np.zeros(shape=n_sequences, dtype=np.int64)
        for n in range(n_sequences):
            clusters[n] = rng.choice(self.n_clusters, p=weights[n])
            block = self.layout.state_range(clusters[n])
            s = block.start + rng.choice(self.n_states[clusters[n]], p=model.init[block])
            for t in range(length):
                if t > 0:
                    s = rng.choice(M, p=model.transition[s])
                states[n, t] = s
                for r, n_sym in enumerate(self.n_symbols):
                    observations[n, t, r] = rng.choice(n_sym, p=model.emission[s, :n_sym, r])

        return observations, states, clusters

    def plot_distribution(self, observations, ax=None):
        r""" Stacked bar plot of the observed symbol proportions at each time
        point, one panel per channel.  Missing observations are left out.

        Parameters
        ----------
        observations : np.array of int, shape (K, N, R) or (K, N)
        ax : matplotlib axes or array of axes, None
            One axis per channel.

        Returns
        -------
        axs : list of matplotlib axes
        """
        obs = pack_observations(observations, self.n_symbols)
        N = obs.shape[1]

        if ax is None:
            fig, axs = plt.subplots(self.n_channels, 1, figsize=(12, 3 * self.n_channels), squeeze=False)
            axs = list(axs[:, 0])
        else:
            axs = list(np.atleast_1d(ax))

        for r, axis in enumerate(axs):
            n_sym = self.n_symbols[r]
            counts = np.array([np.sum(obs[:, :, r] == v, axis=0) for v in range(n_sym)], dtype=np.float64)
            proportions = counts / np.maximum(counts.sum(axis=0), 1)

            bottom = np.zeros(shape=N)
            for v in range(n_sym):
                axis.bar(range(N), proportions[v], bottom=bottom, width=1.0, label=str(v))
                bottom += proportions[v]

            axis.set_ylim(0, 1)
            axis.set_ylabel(self.channel_names[r], fontsize=15)
            axis.legend(loc='upper right')

        axs[-1].set_xlabel('Time', fontsize=15)

        return axs

    def plot_model(self, threshold=0.01, ax=None):
        r""" Graph of the hidden states, one row per cluster.

        States are circles labelled with their name, with the initial
        probability underneath.  Arrows are transitions between different
        states with probability of at least `threshold`.

        Parameters
        ----------
        threshold : float, (R+)
            Smallest transition probability drawn.
        ax : matplotlib axis, None

        Returns
        -------
        ax : matplotlib axis
        """
        if ax is None:
            fig, ax = plt.subplots(1, 1, figsize=(3 * self.n_states.max() + 3, 2.5 * self.n_clusters))

        model = self.model_arrays()
        labels = [name for names in self.state_names for name in names]

        position = np.zeros(shape=(self.layout.n_total, 2))
        for j, states in enumerate(self.layout):
            position[states, 0] = 3 * np.arange(self.n_states[j])
            position[states, 1] = -2.5 * j
            ax.text(-1.2, -2.5 * j, self.cluster_names[j], ha='right', va='center', fontsize=13)

        for i, (x, y) in enumerate(position):
            ax.add_patch(plt.Circle((x, y), 0.6, facecolor='lightsteelblue', edgecolor='k'))
            ax.text(x, y, labels[i], ha='center', va='center', fontsize=12)
            ax.text(x, y - 0.7, "{0:0.2f}".format(model.init[i]), ha='center', va='top', fontsize=9)

        for i, j in zip(*np.nonzero(model.transition >= threshold)):
            if i == j:
                continue
            ax.annotate("", xy=position[j], xytext=position[i],
                        arrowprops=dict(arrowstyle='->', shrinkA=20, shrinkB=20,
                                        connectionstyle='arc3,rad=0.3'))
            x, y = (position[i] + position[j]) / 2
            ax.text(x, y + (0.5 if i < j else -0.5), "{0:0.2f}".format(model.transition[i, j]),
                    ha='center', va='center', fontsize=9)

        ax.set_xlim(-4, 3 * self.n_states.max())
        ax.set_ylim(-2.5 * (self.n_clusters - 1) - 1.5, 1)
        ax.set_aspect('equal')
        ax.axis('off')

        return ax
