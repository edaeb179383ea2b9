from .MHMM import MHMM
from .block_layout import BlockLayout
from .objective import ObjectiveResult
from .objective import objective
from .objective import log_likelihood
from .objective import posterior_cluster_probs
from .objective import mixture_weights
from .objective import simplex_jacobian
from .channels import pack_observations
from .channels import pack_emission
from .channels import combine_channels
