"""bnmix - cluster categorical data with a mixture of structure-learned Bayesian networks."""

__version__ = "0.1.0"

from bnmix.em import fit_mixture as fit_mixture
from bnmix.em import run_em as run_em
from bnmix.models import EMConfig as EMConfig
from bnmix.models import MixtureFit as MixtureFit
from bnmix.models import RunRecord as RunRecord
from bnmix.scoring import BDeScore as BDeScore
from bnmix.synthetic import make_mixture_dataset as make_mixture_dataset
