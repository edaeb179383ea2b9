import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest


@pytest.fixture
def two_cluster_model():
    """Two clusters, two channels; cluster 2 has a structural zero."""
    transition = [np.array([[0.8, 0.2],
                            [0.3, 0.7]]),
                  np.array([[0.6, 0.3, 0.1],
                            [0.0, 0.9, 0.1],
                            [0.2, 0.2, 0.6]])]
    emission = [[np.array([[0.7, 0.3],
                           [0.2, 0.8]]),
                 np.array([[0.5, 0.3, 0.2],
                           [0.1, 0.1, 0.8]])],
                [np.array([[0.4, 0.6],
                           [0.9, 0.1],
                           [0.5, 0.5]]),
                 np.array([[0.3, 0.3, 0.4],
                           [0.6, 0.2, 0.2],
                           [0.05, 0.9, 0.05]])]]
    initial = [np.array([0.6, 0.4]),
               np.array([0.5, 0.3, 0.2])]
    return transition, emission, initial
