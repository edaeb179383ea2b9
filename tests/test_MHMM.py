import numpy as np
import pytest
import matplotlib.pyplot as plt
from matplotlib.text import Annotation
import hypothesis.strategies as st
from hypothesis import given, settings, HealthCheck

from mixhmm.mhmm import MHMM
from mixhmm.mhmm import pack_observations


def get_mhmm(model, **kwargs):
    transition, emission, initial = model
    kwargs.setdefault('verbose', False)
    return MHMM(transition, emission, initial, **kwargs)


def test_build_defaults(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)

    assert mhmm.n_clusters == 2
    assert np.array_equal(mhmm.n_states, [2, 3])
    assert mhmm.n_channels == 2
    assert np.array_equal(mhmm.n_symbols, [2, 3])
    assert mhmm.cluster_names == ["Cluster 1", "Cluster 2"]
    assert mhmm.channel_names == ["1", "2"]
    assert mhmm.state_names == [["1", "2"], ["1", "2", "3"]]
    assert mhmm.state_labels == ["Cluster 1:1", "Cluster 1:2",
                                 "Cluster 2:1", "Cluster 2:2", "Cluster 2:3"]


def test_build_single_channel():
    mhmm = MHMM([np.array([[0.9, 0.1], [0.2, 0.8]])],
                [np.array([[0.7, 0.3], [0.1, 0.9]])],
                [np.array([0.5, 0.5])],
                state_names=[["low", "high"]],
                verbose=False)

    assert mhmm.n_channels == 1
    assert mhmm.channel_names == ["Observations"]
    assert mhmm.state_labels == ["low", "high"]


def test_build_errors(two_cluster_model):
    transition, emission, initial = two_cluster_model

    with pytest.raises(ValueError, match="not a list"):
        MHMM(np.eye(2), emission, initial)
    with pytest.raises(ValueError, match="Unequal list lengths"):
        MHMM(transition[:1], emission, initial)
    with pytest.raises(ValueError, match="square"):
        MHMM([np.array([[0.5, 0.5]]), transition[1]], emission, initial)
    with pytest.raises(ValueError, match="do not sum to one"):
        MHMM([np.array([[0.8, 0.1], [0.3, 0.7]]), transition[1]], emission, initial)
    with pytest.raises(ValueError, match="Number of channels"):
        MHMM(transition, [emission[0], emission[1][:1]], initial)
    with pytest.raises(ValueError, match="Number of rows"):
        MHMM(transition, [emission[0], [emission[1][0][:2], emission[1][1]]], initial)
    with pytest.raises(ValueError, match="Number of columns"):
        MHMM(transition, [emission[0], [emission[1][0], emission[1][1][:, :2] / 0.9]], initial)
    with pytest.raises(ValueError, match="Emission probabilities"):
        MHMM(transition, [emission[0], [emission[1][0], emission[1][1] * 0.5]], initial)
    with pytest.raises(ValueError, match="Initial probabilities in cluster 2"):
        MHMM(transition, emission, [initial[0], np.array([0.5, 0.5, 0.5])])
    with pytest.raises(ValueError, match="state_names"):
        MHMM(transition, emission, initial, state_names=[["a", "b"], ["c"]])


def test_build_warns_on_name_lengths(two_cluster_model):
    with pytest.warns(UserWarning, match="cluster_names"):
        mhmm = get_mhmm(two_cluster_model, cluster_names=["only one"])
    assert mhmm.cluster_names == ["Cluster 1", "Cluster 2"]

    with pytest.warns(UserWarning, match="channel_names"):
        mhmm = get_mhmm(two_cluster_model, channel_names=["a", "b", "c"])
    assert mhmm.channel_names == ["1", "2"]


def test_model_arrays(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)

    model = mhmm.model_arrays()

    assert model.transition.shape == (5, 5)
    assert np.all(model.transition[:2, 2:] == 0)
    assert model.emission.shape == (5, 4, 2)
    assert np.all(model.emission[:, 2:, 0] == 1)
    assert model.emiss_mask.shape == (5, 3, 2)
    assert not np.any(model.emiss_mask[:, 2, 0])
    assert np.allclose(model.init, [0.6, 0.4, 0.5, 0.3, 0.2])
    # Reference (largest) entries and structural zeros are fixed
    assert np.array_equal(model.trans_mask[3], [False, False, False, False, True])
    assert np.array_equal(model.init_mask, [False, True, False, True, True])


def test_n_parameters(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)

    assert mhmm.n_parameters == 7 + 15 + 3 + 1
    assert get_mhmm(two_cluster_model, coefficients=np.zeros(shape=(3, 2))).n_parameters == 7 + 15 + 3 + 3


def test_pack_unpack_round_trip(two_cluster_model):
    coefficients = np.array([[0, 0.3], [0, -1.2]])
    mhmm = get_mhmm(two_cluster_model, coefficients=coefficients)
    model = mhmm.model_arrays()

    theta = mhmm.pack_parameters(model)
    transition, emission, init, coefs = mhmm.unpack_parameters(theta, model)

    assert len(theta) == mhmm.n_parameters
    assert np.allclose(transition, model.transition, rtol=0, atol=1E-12)
    assert np.allclose(emission, model.emission, rtol=0, atol=1E-12)
    assert np.allclose(init, model.init, rtol=0, atol=1E-12)
    assert np.allclose(coefs, coefficients)


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(seed=st.integers(0, 10000), scale=st.floats(0.1, 20))
def test_unpacked_parameters_are_probabilities(two_cluster_model, seed, scale):
    mhmm = get_mhmm(two_cluster_model)
    model = mhmm.model_arrays()
    theta = np.random.RandomState(seed).normal(0, scale, size=mhmm.n_parameters)

    transition, emission, init, _ = mhmm.unpack_parameters(theta, model)

    assert np.allclose(transition.sum(axis=1), 1, rtol=0, atol=1E-9)
    assert np.all(transition[model.transition == 0] == 0)
    for r, n_sym in enumerate(mhmm.n_symbols):
        assert np.allclose(emission[:, :n_sym, r].sum(axis=1), 1, rtol=0, atol=1E-9)
        assert np.all(emission[:, n_sym:, r] == 1)
    for states in mhmm.layout:
        assert np.isclose(init[states].sum(), 1, rtol=0, atol=1E-9)


def test_objective_and_gradient_matches_finite_differences(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model, coefficients=np.array([[0, 0.5], [0, -0.4]]))
    covariates = np.column_stack([np.ones(8), np.linspace(-1, 1, 8)])
    observations, _, _ = mhmm.generate(8, 6, covariates=covariates, random_state=3)
    observations[2, 3, 0] = -1
    obs = pack_observations(observations, mhmm.n_symbols)

    model = mhmm.model_arrays(2)
    theta = mhmm.pack_parameters(model)
    value, gradient = mhmm.objective_and_gradient(theta, obs, covariates, model)

    h = 1E-5
    numerical = np.zeros(len(theta))
    for i in range(len(theta)):
        step = np.zeros(len(theta))
        step[i] = h
        numerical[i] = (mhmm.objective_and_gradient(theta + step, obs, covariates, model)[0]
                        - mhmm.objective_and_gradient(theta - step, obs, covariates, model)[0]) / (2 * h)

    assert np.isclose(value, -mhmm.log_likelihood(observations, covariates))
    assert np.allclose(gradient, numerical, rtol=1E-4, atol=1E-7)


def test_generate(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)

    observations, states, clusters = mhmm.generate(30, 6, random_state=0)

    assert observations.shape == (30, 6, 2)
    assert states.shape == (30, 6)
    assert clusters.shape == (30,)
    assert np.all(observations >= 0)
    assert np.all(observations < mhmm.n_symbols)
    for n in range(30):
        assert all(mhmm.layout.block_of(s) == clusters[n] for s in states[n])


def test_generate_follows_covariates(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model, coefficients=np.array([[0, 30.0], [0, -60.0]]))
    covariates = np.column_stack([np.ones(20), np.repeat([0, 1], 10)])

    _, _, clusters = mhmm.generate(20, 3, covariates=covariates, random_state=1)

    assert np.array_equal(clusters, np.repeat([1, 0], 10))


def test_generate_errors(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)

    with pytest.raises(ValueError, match="at least 2"):
        mhmm.generate(1, 5)
    with pytest.raises(ValueError, match="covariates"):
        mhmm.generate(5, 5, covariates=np.ones(shape=(4, 1)))


def test_mixture_probabilities(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model, coefficients=np.array([[1, 0.5], [1, -1.0]]))
    covariates = np.array([[1, 0], [1, 1], [1, 2]])

    weights = mhmm.mixture_probabilities(covariates)

    logits = np.column_stack([np.zeros(3), 0.5 - covariates[:, 1]])
    expected = np.exp(logits) / np.exp(logits).sum(axis=1, keepdims=True)
    assert np.allclose(weights, expected)
    assert np.allclose(get_mhmm(two_cluster_model).mixture_probabilities(n_sequences=2), 0.5)


def test_posterior_cluster_probabilities(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)
    observations, _, clusters = mhmm.generate(25, 12, random_state=4)

    posterior = mhmm.posterior_cluster_probabilities(observations)
    most_probable = mhmm.most_probable_cluster(observations)

    assert posterior.shape == (25, 2)
    assert np.allclose(posterior.sum(axis=1), 1)
    assert np.array_equal(most_probable, np.argmax(posterior, axis=1))


def test_log_likelihood_and_bic_with_missing(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)
    observations, _, _ = mhmm.generate(10, 5, random_state=5)
    observations[0, 2, 1] = -1
    observations[3, :, 0] = -1

    ll = mhmm.log_likelihood(observations)
    n_obs = (10 * 5 * 2 - 1 - 5) / 2

    assert np.isfinite(ll)
    assert ll < 0
    assert np.isclose(mhmm.bic(observations), -2 * ll + np.log(n_obs) * mhmm.n_parameters)


def test_fit_improves_log_likelihood(two_cluster_model):
    truth = get_mhmm(two_cluster_model)
    observations, _, _ = truth.generate(40, 8, random_state=6)

    transition, emission, initial = two_cluster_model
    start = [[np.array([[0.6, 0.4], [0.4, 0.6]]), emission[0][1]], emission[1]]
    mhmm = MHMM(transition, start, initial, max_iter=200, verbose=False)
    ll_start = mhmm.log_likelihood(observations)

    mhmm.fit(observations)

    assert mhmm.log_likelihood_ >= ll_start
    assert np.isclose(mhmm.log_likelihood(observations), mhmm.log_likelihood_, rtol=1E-8)
    assert len(mhmm.results_) == 1
    assert mhmm.coefficients.shape == (1, 2)
    # Structural zeros stay zero
    assert mhmm.transition_matrix[1][1, 0] == 0
    assert np.allclose(mhmm.transition_matrix[1].sum(axis=1), 1)


def test_fit_keeps_single_channel_format():
    mhmm = MHMM([np.array([[0.9, 0.1], [0.2, 0.8]]), np.array([[1.0]])],
                [np.array([[0.7, 0.3], [0.1, 0.9]]), np.array([[0.5, 0.5]])],
                [np.array([0.6, 0.4]), np.array([1.0])],
                max_iter=50, verbose=False)
    observations, _, _ = mhmm.generate(20, 6, random_state=7)

    mhmm.fit(observations[:, :, 0])

    assert mhmm.emission_matrix[0].shape == (2, 2)
    assert mhmm.emission_matrix[1].shape == (1, 2)
    assert mhmm.transition_matrix[1].shape == (1, 1)


def test_fit_wrong_coefficients(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model, coefficients=np.zeros(shape=(3, 2)))
    observations, _, _ = get_mhmm(two_cluster_model).generate(5, 4, random_state=8)

    with pytest.raises(ValueError, match="Wrong dimensions of coefficients"):
        mhmm.fit(observations, covariates=np.ones(shape=(5, 2)))
    with pytest.raises(ValueError, match="Number of subjects"):
        mhmm.fit(observations, covariates=np.ones(shape=(4, 3)))


@pytest.mark.slow
def test_fit_with_restarts_and_covariates(two_cluster_model):
    truth = get_mhmm(two_cluster_model, coefficients=np.array([[0, -0.5], [0, 1.5]]))
    covariates = np.column_stack([np.ones(60), np.random.RandomState(0).normal(size=60)])
    observations, _, _ = truth.generate(60, 10, covariates=covariates, random_state=9)

    mhmm = get_mhmm(two_cluster_model, n_restarts=2, random_state=0, max_iter=300)
    ll_start = mhmm.log_likelihood(observations, covariates)
    mhmm.fit(observations, covariates)

    assert len(mhmm.results_) == 3
    scores = [score for score, _ in mhmm.results_]
    assert scores == sorted(scores, reverse=True)
    assert mhmm.log_likelihood_ == scores[0]
    assert mhmm.log_likelihood_ >= ll_start
    assert mhmm.coefficients.shape == (2, 2)
    assert np.all(mhmm.coefficients[:, 0] == 0)


def test_plot_distribution(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model, channel_names=["Parenthood", "Residence"])
    observations, _, _ = mhmm.generate(10, 5, random_state=10)

    axs = mhmm.plot_distribution(observations)

    assert len(axs) == 2
    assert axs[0].get_ylabel() == "Parenthood"
    assert axs[1].get_xlabel() == "Time"
    plt.close('all')


def test_bic_counts_coefficients_of_every_covariate(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model)
    covariates = np.column_stack([np.ones(12), np.linspace(-1, 1, 12)])
    observations, _, _ = mhmm.generate(12, 5, covariates=covariates, random_state=11)

    ll = mhmm.log_likelihood(observations, covariates)
    n_obs = 12 * 5

    # Two covariates: (J - 1) * q = 2 coefficients
    assert np.isclose(mhmm.bic(observations, covariates), -2 * ll + np.log(n_obs) * (7 + 15 + 3 + 2))
    assert np.isclose(mhmm.bic(observations), -2 * mhmm.log_likelihood(observations)
                      + np.log(n_obs) * mhmm.n_parameters)
    fitted = get_mhmm(two_cluster_model, coefficients=np.zeros(shape=(2, 2)))
    assert fitted.n_parameters == 7 + 15 + 3 + 2


def test_fit_runs_restarts_sequentially_without_jobs(two_cluster_model, monkeypatch):
    mhmm = get_mhmm(two_cluster_model, n_restarts=1, random_state=2, max_iter=5)
    observations, _, _ = mhmm.generate(10, 5, random_state=12)

    def fail(*args, **kwargs):
        raise AssertionError("parallel_fit called")

    monkeypatch.setattr(mhmm, 'parallel_fit', fail)
    mhmm.fit(observations)

    assert len(mhmm.results_) == 2


def test_sequential_and_parallel_fit_agree(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model, n_restarts=1, random_state=2, max_iter=20, n_jobs=2)
    observations, _, _ = mhmm.generate(10, 5, random_state=13)
    obs = pack_observations(observations, mhmm.n_symbols)
    covariates = np.ones(shape=(10, 1))
    model = mhmm.model_arrays(1)
    theta = mhmm.pack_parameters(model)

    sequential = mhmm.sequential_fit(theta, obs, covariates, model)
    parallel = mhmm.parallel_fit(theta, obs, covariates, model)

    assert len(sequential) == len(parallel) == 2
    for (ll_seq, res_seq), (ll_par, res_par) in zip(sequential, parallel):
        assert np.isclose(ll_seq, ll_par)
        assert np.allclose(res_seq.x, res_par.x)


def test_plot_model(two_cluster_model):
    mhmm = get_mhmm(two_cluster_model, cluster_names=["Stable", "Mobile"])

    ax = mhmm.plot_model()

    assert len(ax.patches) == 5
    assert len([text for text in ax.texts if isinstance(text, Annotation)]) == 7
    assert "Mobile" in [text.get_text() for text in ax.texts]

    fig, other = plt.subplots(1, 1)
    assert mhmm.plot_model(threshold=0.25, ax=other) is other
    assert len([text for text in other.texts if isinstance(text, Annotation)]) == 2
    plt.close('all')
