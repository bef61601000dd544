"""
Tests for the data classes in models.py.

Run: uv run pytest tests/test_models.py -v
"""

import math

import numpy as np
import pytest

from bnmix.config import SEEDS
from bnmix.models import (
    ClusterCenter,
    EMConfig,
    LabelMatch,
    OuterIteration,
    RecoveryRates,
    RunRecord,
)
from bnmix.structure import empty_structure

# ── EMConfig ─────────────────────────────────────────────────────────────────


class TestEMConfig:
    def test_defaults(self):
        config = EMConfig()
        assert config.seeds == SEEDS
        assert config.strict_convergence is False

    def test_frozen(self):
        config = EMConfig()
        with pytest.raises(AttributeError):
            config.chi = 2.0

    @pytest.mark.parametrize(
        "field,value",
        [
            ("n_clusters", 0),
            ("chi", 0.0),
            ("prior_count", -1.0),
            ("edge_penalty", -0.5),
            ("epsilon", 0.0),
            ("inner_iterations", 0),
            ("max_outer_iterations", 0),
            ("seeds", ()),
            ("seeds", (0, -1)),
            ("max_workers", 0),
        ],
    )
    def test_rejects_invalid(self, field, value):
        with pytest.raises(ValueError, match=field):
            EMConfig(**{field: value})

    def test_lists_every_bad_field(self):
        with pytest.raises(ValueError, match="chi.*epsilon"):
            EMConfig(chi=0.0, epsilon=-1.0)


# ── Run records ──────────────────────────────────────────────────────────────


class TestRunRecord:
    def test_empty_record(self):
        run = RunRecord(seed=2)
        assert run.n_outer == 0
        assert math.isinf(run.log_likelihood)
        assert run.accuracy is None
        with pytest.raises(ValueError):
            run.assignments

    def test_terminal_values(self):
        run = RunRecord(seed=0, responsibilities=np.array([[0.2, 0.8], [0.6, 0.4]]))
        run.iterations = [
            OuterIteration(index=0, delta=1.0, log_likelihood=-9.0),
            OuterIteration(
                index=1,
                delta=0.0,
                log_likelihood=-4.0,
                match=LabelMatch(permutation=(0, 1), n_correct=1, n_samples=2),
            ),
        ]
        assert run.n_outer == 2
        assert run.log_likelihood == -4.0
        assert run.accuracy == pytest.approx(0.5)
        np.testing.assert_array_equal(run.assignments, [1, 0])

    def test_center_history(self):
        center = ClusterCenter(index=0, structure=empty_structure(2))
        learned = empty_structure(2)
        learned.add_edge(0, 1)
        center.replace_structure(learned)
        assert center.structure is learned
        assert center.history == [learned]
        assert center.n_edges == 1


class TestRates:
    def test_zero_denominators(self):
        rates = RecoveryRates(0, 0, 0, 0, n_true_edges=0, n_possible_false=0)
        assert rates.tpr == 0.0
        assert rates.fpr == 0.0

    def test_match_accuracy_empty(self):
        assert LabelMatch(permutation=(), n_correct=0, n_samples=0).accuracy == 0.0
