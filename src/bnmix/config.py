"""Configuration constants for the Bayesian-network mixture EM."""

N_CLUSTERS = 3

CHI = 1.0  # mixing-weight pseudo-count
PRIOR_COUNT = 1.0  # BDe equivalent sample size
EDGE_PENALTY = 1.0  # log-prior cost per edge

EPSILON = 1e-6  # outer-loop convergence threshold (squared responsibility change)
INNER_ITERATIONS = 10
MAX_OUTER_ITERATIONS = 300  # liveness cap; hitting it flags the run

MAX_PARENTS = 3  # in-degree cap for the structure search
MAX_SEARCH_STEPS = 200  # hill-climbing moves per search call

SEEDS = (0, 1, 2, 3, 4)
MAX_WORKERS = 5  # concurrent restarts

# Synthetic experiment
SAMPLES_PER_GROUP = 400
N_VARIABLES = 20
GENERATOR_SEED = 2024
POWER_LAW_EXPONENT = 2.0
CPT_CONCENTRATION = 0.5  # Beta(c, c); small c gives near-deterministic tables
