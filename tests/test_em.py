"""
Tests for the EM orchestrator and multi-restart driver in em.py.

Most tests fit fast mixtures (max_parents=0, i.e. independent Bernoulli
components) or count oracle calls through a recording subclass. The
end-to-end scenario at the bottom runs full structure search on the
default three-network benchmark and takes a few minutes.

Run: uv run pytest tests/test_em.py -v
"""

import numpy as np
import pytest

from bnmix.em import fit_mixture, initial_responsibilities, rank_runs, run_em, summarize_runs
from bnmix.errors import NonConvergence, NoSuccessfulRun, ScoreOracleError
from bnmix.models import EMConfig, OuterIteration, RunRecord
from bnmix.scoring import BDeScore
from bnmix.synthetic import make_mixture_dataset

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def separated_data() -> tuple[np.ndarray, np.ndarray]:
    """Two obvious groups: mostly-zero rows and mostly-one rows (100 each, 8 vars)."""
    rng = np.random.default_rng(0)
    zeros = (rng.random((100, 8)) < 0.05).astype(np.int64)
    ones = (rng.random((100, 8)) < 0.95).astype(np.int64)
    return np.vstack([zeros, ones]), np.repeat([0, 1], 100)


@pytest.fixture
def fast_config() -> EMConfig:
    return EMConfig(n_clusters=2, max_parents=0, inner_iterations=3, max_outer_iterations=30)


class RecordingScore(BDeScore):
    """BDeScore that logs every oracle call."""

    calls: list[tuple[str, frozenset]] = []

    def search(self, start, rng=None):
        RecordingScore.calls.append(("search", frozenset(start.edges())))
        return super().search(start, rng)

    def sample_log_scores(self, structure):
        RecordingScore.calls.append(("score", frozenset(structure.edges())))
        return super().sample_log_scores(structure)


def _record(seed: int, ll: float) -> RunRecord:
    run = RunRecord(seed=seed)
    run.iterations.append(OuterIteration(index=0, delta=0.0, log_likelihood=ll))
    return run


# ── initial_responsibilities() ──────────────────────────────────────────────


class TestInitialResponsibilities:
    def test_positive_rows_sum_to_one(self) -> None:
        resp = initial_responsibilities(50, 3, np.random.default_rng(0))
        assert resp.shape == (50, 3)
        assert np.all(resp > 0)
        np.testing.assert_allclose(resp.sum(axis=1), 1.0)

    def test_seeded(self) -> None:
        a = initial_responsibilities(10, 3, np.random.default_rng(4))
        b = initial_responsibilities(10, 3, np.random.default_rng(4))
        np.testing.assert_array_equal(a, b)


# ── run_em() ─────────────────────────────────────────────────────────────────


class TestRunEm:
    """Single-seed fits."""

    def test_converges_on_separated_data(self, separated_data, fast_config) -> None:
        data, labels = separated_data
        run = run_em(data, fast_config, seed=0, true_labels=labels)
        assert run.converged
        assert not run.hit_iteration_cap
        assert run.iterations[-1].delta < fast_config.epsilon
        assert run.accuracy >= 0.98

    def test_final_state_invariants(self, separated_data, fast_config) -> None:
        data, _ = separated_data
        run = run_em(data, fast_config, seed=1)
        np.testing.assert_allclose(run.responsibilities.sum(axis=1), 1.0, atol=1e-9)
        assert run.scores.shape == (200, 2)
        assert run.mixing_weights.sum() == pytest.approx(1.0)
        assert len(run.centers) == 2
        for center in run.centers:
            assert len(center.history) == run.n_outer
            assert center.structure is center.history[-1]

    def test_no_ground_truth_no_diagnostics(self, separated_data, fast_config) -> None:
        data, _ = separated_data
        run = run_em(data, fast_config, seed=0)
        assert run.permutation is None
        assert run.accuracy is None
        assert all(it.match is None for it in run.iterations)

    def test_same_seed_same_result(self, separated_data, fast_config) -> None:
        data, _ = separated_data
        a = run_em(data, fast_config, seed=3)
        b = run_em(data, fast_config, seed=3)
        assert a.log_likelihood == b.log_likelihood
        np.testing.assert_array_equal(a.responsibilities, b.responsibilities)

    def test_oracle_call_pattern(self, separated_data) -> None:
        """K searches then K scorings per outer step, however many inner iterations."""
        data, _ = separated_data
        config = EMConfig(
            n_clusters=2, max_parents=0, inner_iterations=4, max_outer_iterations=2, epsilon=1e-300
        )
        RecordingScore.calls = []
        run = run_em(data, config, seed=0, score_factory=RecordingScore)
        kinds = [kind for kind, _ in RecordingScore.calls]
        per_outer = ["search"] * 2 + ["score"] * 2
        assert kinds == per_outer * run.n_outer

    def test_warm_start_from_previous_center(self, separated_data) -> None:
        data, _ = separated_data
        config = EMConfig(
            n_clusters=2, max_parents=2, inner_iterations=2, max_outer_iterations=3, epsilon=1e-300
        )
        RecordingScore.calls = []
        run = run_em(data, config, seed=0, score_factory=RecordingScore)
        starts = [edges for kind, edges in RecordingScore.calls if kind == "search"]
        # Searches run cluster by cluster each outer step; from step 2 on the start is the
        # center learned in the previous step
        for t in range(1, run.n_outer):
            for k, center in enumerate(run.centers):
                assert starts[t * 2 + k] == frozenset(center.history[t - 1].edges())

    def test_records_matches_and_recovery(self) -> None:
        ds = make_mixture_dataset(n_groups=2, samples_per_group=150, n_variables=6, seed=3)
        config = EMConfig(n_clusters=2, inner_iterations=3, max_outer_iterations=5)
        run = run_em(ds.data, config, seed=0, true_labels=ds.labels, true_structures=ds.structures)
        assert run.permutation is not None
        for it in run.iterations:
            assert it.match is not None
            assert 0 <= it.match.n_correct <= ds.n_samples
            assert len(it.recovery) == 2
            assert all(0.0 <= r.tpr <= 1.0 and 0.0 <= r.fpr <= 1.0 for r in it.recovery)

    def test_label_length_mismatch_raises(self, separated_data, fast_config) -> None:
        data, labels = separated_data
        with pytest.raises(ValueError):
            run_em(data, fast_config, seed=0, true_labels=labels[:10])


class TestIterationCap:
    """Non-convergence: best-effort result by default, error when strict."""

    def test_cap_flags_run(self, separated_data, capsys) -> None:
        data, _ = separated_data
        config = EMConfig(n_clusters=2, max_parents=0, max_outer_iterations=1, epsilon=1e-300)
        run = run_em(data, config, seed=0)
        assert run.hit_iteration_cap
        assert not run.converged
        assert run.n_outer == 1
        assert run.responsibilities is not None
        assert "WARNING" in capsys.readouterr().out

    def test_strict_raises_with_partial_record(self, separated_data) -> None:
        data, _ = separated_data
        config = EMConfig(
            n_clusters=2,
            max_parents=0,
            max_outer_iterations=1,
            epsilon=1e-300,
            strict_convergence=True,
        )
        with pytest.raises(NonConvergence) as excinfo:
            run_em(data, config, seed=0)
        assert excinfo.value.record.n_outer == 1
        assert excinfo.value.record.hit_iteration_cap


# ── rank_runs() / fit_mixture() ─────────────────────────────────────────────


class TestRankRuns:
    def test_highest_likelihood_first(self) -> None:
        runs = [_record(seed, ll) for seed, ll in enumerate([-50.0, -10.0, -30.0, -20.0, -40.0])]
        ranked = rank_runs(runs)
        assert [r.seed for r in ranked] == [1, 3, 2, 4, 0]

    def test_ties_go_to_lowest_seed(self) -> None:
        runs = [_record(7, -10.0), _record(2, -10.0), _record(5, -10.0)]
        assert [r.seed for r in rank_runs(runs)] == [2, 5, 7]


class TestFitMixture:
    def test_best_is_max_likelihood(self, separated_data) -> None:
        data, labels = separated_data
        config = EMConfig(n_clusters=2, max_parents=0, inner_iterations=3, seeds=(0, 1, 2, 3, 4))
        fit = fit_mixture(data, config, true_labels=labels, progress=False)
        assert len(fit.runs) == 5
        assert not fit.failures
        lls = [r.log_likelihood for r in fit.runs]
        assert fit.best.log_likelihood == max(lls)
        assert lls == sorted(lls, reverse=True)

    def test_runs_are_independent_of_concurrency(self, separated_data) -> None:
        data, _ = separated_data
        serial = EMConfig(n_clusters=2, max_parents=0, seeds=(0, 1, 2), max_workers=1)
        parallel = EMConfig(n_clusters=2, max_parents=0, seeds=(0, 1, 2), max_workers=3)
        a = fit_mixture(data, serial, progress=False)
        b = fit_mixture(data, parallel, progress=False)
        assert [(r.seed, r.log_likelihood) for r in a.runs] == [
            (r.seed, r.log_likelihood) for r in b.runs
        ]

    def test_failed_run_does_not_block_others(self, separated_data, monkeypatch) -> None:
        data, _ = separated_data

        def flaky_run_em(data, config, seed, *args, **kwargs):
            if seed == 1:
                raise ScoreOracleError("no valid structure")
            return _record(seed, -float(seed))

        monkeypatch.setattr("bnmix.em.run_em", flaky_run_em)
        fit = fit_mixture(data, EMConfig(seeds=(0, 1, 2)), progress=False)
        assert [r.seed for r in fit.runs] == [0, 2]
        assert len(fit.failures) == 1
        assert fit.failures[0].seed == 1
        assert fit.failures[0].error_type == "ScoreOracleError"

    def test_all_failed_raises(self, separated_data, monkeypatch) -> None:
        data, _ = separated_data

        def broken_run_em(*args, **kwargs):
            raise ScoreOracleError("broken")

        monkeypatch.setattr("bnmix.em.run_em", broken_run_em)
        with pytest.raises(NoSuccessfulRun) as excinfo:
            fit_mixture(data, EMConfig(seeds=(3, 1)), progress=False)
        assert [f.seed for f in excinfo.value.failures] == [1, 3]

    def test_strict_cap_becomes_failure(self, separated_data) -> None:
        data, _ = separated_data
        config = EMConfig(
            n_clusters=2,
            max_parents=0,
            max_outer_iterations=1,
            epsilon=1e-300,
            strict_convergence=True,
            seeds=(0,),
        )
        with pytest.raises(NoSuccessfulRun) as excinfo:
            fit_mixture(data, config, progress=False)
        assert excinfo.value.failures[0].error_type == "NonConvergence"

    def test_summarize_runs(self, separated_data) -> None:
        data, labels = separated_data
        config = EMConfig(n_clusters=2, max_parents=0, seeds=(0, 1))
        fit = fit_mixture(data, config, true_labels=labels, progress=False)
        rows = summarize_runs(fit)
        assert [row["rank"] for row in rows] == [0, 1]
        assert rows[0]["seed"] == fit.best.seed
        assert set(rows[0]) == {
            "rank",
            "seed",
            "converged",
            "hit_iteration_cap",
            "outer_iterations",
            "log_likelihood",
            "accuracy",
        }


# ── End-to-end ───────────────────────────────────────────────────────────────


@pytest.fixture(scope="module")
def benchmark():
    """Default synthetic benchmark: three networks, 400 samples each."""
    return make_mixture_dataset()


@pytest.fixture(scope="module")
def benchmark_run(benchmark):
    """Default configuration (K=3, epsilon=1e-6), EM seed 0."""
    return run_em(
        benchmark.data,
        EMConfig(),
        seed=0,
        true_labels=benchmark.labels,
        true_structures=benchmark.structures,
    )


class TestEndToEnd:
    """One fixed seed on the default benchmark."""

    def test_benchmark_layout(self, benchmark) -> None:
        assert benchmark.n_samples == 1200
        assert benchmark.n_groups == 3
        np.testing.assert_array_equal(np.bincount(benchmark.labels), [400, 400, 400])

    def test_converges_within_default_cap(self, benchmark_run) -> None:
        assert benchmark_run.converged
        assert not benchmark_run.hit_iteration_cap
        assert benchmark_run.n_outer < EMConfig().max_outer_iterations
        assert benchmark_run.iterations[-1].delta < 1e-6

    def test_recovers_groups(self, benchmark_run) -> None:
        assert benchmark_run.accuracy >= 0.9

    def test_recovers_structure(self, benchmark_run) -> None:
        rates = benchmark_run.iterations[-1].recovery
        assert len(rates) == 3
        mean_tpr = np.mean([r.tpr for r in rates])
        mean_fpr = np.mean([r.fpr for r in rates])
        assert mean_tpr > mean_fpr
