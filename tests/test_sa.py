import math
import numpy as np
import pandas as pd
import pytest
from mpm_tools.config.space import CovariateSpace, Extreme
from mpm_tools.model import StageModel
from mpm_tools.sa import SensitivityAnalysis, SensitivityAnalysisConfig, Covariation
from mpm_tools.topology import LifeCycleTopology, Cell
from mpm_tools.utils.results import SensitivityResults
from mpm_tools.vitalrates import VitalRateCoefficients, VitalRateModel


lemur = {
    "topology": "two_sex_juvenile_adult",
    "models": {
        "survival": {
            "link": "logit",
            "intercept": 9.95,
            "slopes": {"dens": 0.0401, "rain": 0.0031, "temp": -0.38},
            "interactions": {"dens:rain": -0.0000466},
            "levels": {
                "female_adult": {},
                "female_juvenile": {"intercept": -1.86, "dens": 0.0099},
                "male_adult": {"intercept": -1.74, "rain": 0.0013},
                "male_juvenile": {"intercept": -3.6, "dens": 0.0099, "rain": 0.0013},
            },
        },
        "rec": {"link": "log", "intercept": -10.965, "slopes": {"dens": -0.024, "temp": 0.364}},
    },
    "rates": {
        "s_mj": {"model": "survival", "category": "male_juvenile"},
        "s_ma": {"model": "survival", "category": "male_adult"},
        "s_fj": {"model": "survival", "category": "female_juvenile"},
        "s_fa": {"model": "survival", "category": "female_adult"},
        "rec": "rec",
    },
}


def lemur_space() -> CovariateSpace:
    return CovariateSpace.from_frame(pd.DataFrame({
        "year": [2001, 2002, 2003, 2004, 2005, 2006],
        "rain": [640.0, 780.0, 910.0, 910.0, 700.0, 820.0],
        "temp": [31.2, 30.5, 29.8, 30.1, 32.0, 30.9],
        "dens": [52.0, 41.0, 35.0, 47.0, 35.0, 44.0],
    }), time_column="year")


def serial_config(**kwargs) -> SensitivityAnalysisConfig:
    return SensitivityAnalysisConfig(parallel=False, **kwargs)


def exp_model() -> StageModel:
    """Single stage with lambda = exp(x)."""
    topology = LifeCycleTopology("single", ("all",), (Cell(0, 0, (("growth",),)),))
    growth = VitalRateModel("growth", VitalRateCoefficients(slopes={"x": 1.0}), link="log")
    return StageModel(topology, {"growth": growth})


def exp_space() -> CovariateSpace:
    x = [math.log(0.8), math.log(1.0), math.log(1.2), math.log(0.9)]
    return CovariateSpace(pd.DataFrame({"x": x}))


def oscillating_model() -> StageModel:
    """[[exp(x), -0.5], [0.5, 0]]: complex eigenvalues for x < 0, lambda = 1 at exp(x) = 1.25."""
    topology = LifeCycleTopology(
        "oscillating", ("a", "b"),
        (Cell(0, 0, (("g",),)), Cell(0, 1, ((-0.5,),)), Cell(1, 0, ((0.5,),))),
    )
    g = VitalRateModel("g", VitalRateCoefficients(slopes={"x": 1.0}), link="log")
    return StageModel(topology, {"g": g})


def test_equilibrium_search_finds_crossing():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config(resolution=41))
    found = sa.find_equilibrium_combinations()
    assert not found.empty
    assert found.evaluated == 41
    assert all(abs(lam - 1.0) <= 0.01 for lam in found.lambdas)
    assert found.lambdas == pytest.approx([math.exp(c["x"]) for c in found.combinations])


def test_equilibrium_search_can_be_empty():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config())
    grid = [{"x": math.log(0.5)}, {"x": math.log(2.0)}]
    found = sa.find_equilibrium_combinations(grid)
    assert found.empty
    assert found.failures == []


def test_equilibrium_tolerance_is_tunable():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config(resolution=41))
    narrow = sa.find_equilibrium_combinations(tolerance=0.0001)
    wide = sa.find_equilibrium_combinations(tolerance=0.1)
    assert len(narrow) < len(wide)


def test_equilibrium_search_isolates_failures():
    sa = SensitivityAnalysis(oscillating_model(), exp_space(), serial_config())
    grid = [{"x": -1.0}, {"x": math.log(1.25)}, {"x": 2.0}]
    found = sa.find_equilibrium_combinations(grid)
    assert found.combinations == [{"x": math.log(1.25)}]
    assert found.lambdas == pytest.approx([1.0])
    assert len(found.failures) == 1
    assert found.failures[0][0] == {"x": -1.0}


def test_parallel_search_matches_serial():
    parallel = SensitivityAnalysis(exp_model(), exp_space(), SensitivityAnalysisConfig(resolution=41, workers=4))
    serial = SensitivityAnalysis(exp_model(), exp_space(), serial_config(resolution=41))
    assert parallel.find_equilibrium_combinations().combinations == serial.find_equilibrium_combinations().combinations


def test_perturb_relative_change():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config())
    result = sa.perturb({"x": 0.1}, "x")
    assert result.kind == "relative"
    assert result.lambda_control == pytest.approx(math.exp(0.1))
    assert result.delta == pytest.approx(math.exp(0.01) - 1)


def test_perturb_increases_by_absolute_value():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config())
    result = sa.perturb({"x": -0.2}, "x")
    assert result.delta == pytest.approx(math.exp(0.02) - 1)
    assert result.delta > 0


def test_perturb_with_zero_fraction_is_exactly_zero():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config())
    assert sa.perturb({"x": 0.1}, "x", fraction=0.0).delta == 0.0


def test_perturb_independent_rate_is_exactly_zero():
    model = StageModel.from_dict(lemur)
    sa = SensitivityAnalysis(model, lemur_space(), serial_config())
    combination = {"dens": 40.0, "rain": 800.0, "temp": 30.0}
    result = sa.perturb(combination, "rain", vital_rate="rec")
    assert result.delta == 0.0
    assert result.lambda_perturbed == result.lambda_control
    assert sa.perturb(combination, "rain", vital_rate="s_fa").delta != 0.0


def test_perturb_single_rate_differs_from_all():
    model = StageModel.from_dict(lemur)
    sa = SensitivityAnalysis(model, lemur_space(), serial_config())
    combination = {"dens": 40.0, "rain": 800.0, "temp": 30.0}
    single = sa.perturb(combination, "temp", vital_rate="rec")
    everything = sa.perturb(combination, "temp")
    assert single.delta != everything.delta
    assert everything.vital_rate == "all"


def test_perturb_several_covariates_together():
    model = StageModel.from_dict(lemur)
    sa = SensitivityAnalysis(model, lemur_space(), serial_config())
    combination = {"dens": 40.0, "rain": 800.0, "temp": 30.0}
    result = sa.perturb(combination, ["rain", "temp"])
    assert result.covariates == ("rain", "temp")
    assert result.covariate == "rain+temp"

    perturbed = {"dens": 40.0, "rain": 880.0, "temp": 33.0}
    expected = model.run(perturbed) / model.run(combination) - 1
    assert result.delta == pytest.approx(expected)


def test_perturb_rejects_unknown_inputs():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config())
    with pytest.raises(KeyError):
        sa.perturb({"x": 0.1}, "x", vital_rate="survival")
    with pytest.raises(KeyError):
        sa.perturb({"x": 0.1}, "y")


def test_perturb_records_non_ergodic_baseline():
    sa = SensitivityAnalysis(oscillating_model(), exp_space(), serial_config())
    result = sa.perturb({"x": -1.0}, "x")
    assert not result.ok
    assert result.delta is None


def test_unknown_configured_covariate():
    with pytest.raises(KeyError):
        SensitivityAnalysis(exp_model(), exp_space(), serial_config(covariates=["y"]))


def test_scaled_sensitivity_no_covariation():
    model = StageModel.from_dict(lemur)
    space = lemur_space()
    sa = SensitivityAnalysis(model, space, serial_config())
    result = sa.scaled_sensitivity("rain", Covariation.NONE)

    summary = space.marginal("rain")
    low = space.at_extreme("rain", Extreme.MIN, paired=False)
    high = space.at_extreme("rain", Extreme.MAX, paired=False)
    expected = abs(model.run(high) - model.run(low)) / ((summary.max - summary.min) / summary.sd)
    assert result.kind == "scaled"
    assert result.covariation == "none"
    assert result.baseline_id == "rain:none"
    assert result.delta == pytest.approx(expected)


def test_scaled_sensitivity_with_covariation_uses_paired_values():
    model = StageModel.from_dict(lemur)
    space = lemur_space()
    sa = SensitivityAnalysis(model, space, serial_config())
    result = sa.scaled_sensitivity("dens", "paired")

    summary = space.marginal("dens")
    # dens hit its minimum first in 2003 and its maximum in 2001
    low = {"rain": 910.0, "temp": 29.8, "dens": 35.0}
    high = {"rain": 640.0, "temp": 31.2, "dens": 52.0}
    expected = abs(model.run(high) - model.run(low)) / (summary.range / summary.sd)
    assert result.baseline == low
    assert result.delta == pytest.approx(expected)
    assert result.delta != sa.scaled_sensitivity("dens", "none").delta


def test_scaled_sensitivity_independent_rate_is_exactly_zero():
    sa = SensitivityAnalysis(StageModel.from_dict(lemur), lemur_space(), serial_config())
    assert sa.scaled_sensitivity("rain", Covariation.NONE, vital_rate="rec").delta == 0.0


def flat_covariate_analysis(**kwargs) -> SensitivityAnalysis:
    """lambda = exp(x + 0.2 * flat), with flat never varying."""
    topology = LifeCycleTopology("single", ("all",), (Cell(0, 0, (("growth",),)),))
    growth = VitalRateModel("growth", VitalRateCoefficients(slopes={"x": 1.0, "flat": 0.2}), link="log")
    df = pd.DataFrame({"x": [math.log(0.8), 0.0, math.log(1.2)], "flat": [0.0, 0.0, 0.0]})
    return SensitivityAnalysis(StageModel(topology, {"growth": growth}), CovariateSpace(df), serial_config(**kwargs))


def test_scaled_sensitivity_without_variation_is_inconclusive():
    result = flat_covariate_analysis().scaled_sensitivity("flat")
    assert not result.ok
    assert result.error == "no variation"
    assert result.delta is None
    assert result.baseline_id == "flat:none"


def test_run_keeps_results_when_a_covariate_never_varies():
    report = flat_covariate_analysis(resolution=41).run()
    assert not report.equilibrium.empty
    assert len(report.relative) > 0
    assert len(report.scaled) == 4
    assert [r.covariate for r in report.scaled.failures] == ["flat", "flat"]
    assert all(r.ok for r in report.scaled if r.covariate == "x")


def test_sweep_shape_and_order():
    model = StageModel.from_dict(lemur)
    sa = SensitivityAnalysis(model, lemur_space(), serial_config())
    combinations = [
        {"dens": 40.0, "rain": 800.0, "temp": 30.0},
        {"dens": 45.0, "rain": 700.0, "temp": 31.0},
    ]
    results = sa.sweep(combinations)
    assert isinstance(results, SensitivityResults)
    # 2 combinations x (3 covariates + joint) x (5 rates + all)
    assert len(results) == 2 * 4 * 6
    assert results[0].baseline_id == 0
    assert results[0].covariates == ("rain",)
    assert results[0].vital_rate == "s_mj"
    assert results[5].vital_rate == "all"
    assert results[18].covariates == ("rain", "temp", "dens")
    assert results[-1].baseline_id == 1
    assert not results.failures

    # rain never enters recruitment
    rec_rain = [r for r in results if r.vital_rate == "rec" and r.covariates == ("rain",)]
    assert all(r.delta == 0.0 for r in rec_rain)


def test_sweep_without_joint_perturbation():
    sa = SensitivityAnalysis(StageModel.from_dict(lemur), lemur_space(), serial_config(include_joint=False))
    results = sa.sweep([{"dens": 40.0, "rain": 800.0, "temp": 30.0}], covariates=["temp"])
    assert len(results) == 6
    assert {r.covariate for r in results} == {"temp"}


def test_sweep_isolates_failed_combinations():
    sa = SensitivityAnalysis(oscillating_model(), exp_space(), serial_config())
    results = sa.sweep([{"x": -1.0}, {"x": math.log(1.25)}])
    assert len(results) == 4
    assert [r.ok for r in results] == [False, False, True, True]
    assert len(results.failures) == 2


def test_results_to_frame():
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config())
    frame = sa.sweep([{"x": 0.1}, {"x": -0.1}]).to_frame()
    assert list(frame["vital_rate"]) == ["growth", "all", "growth", "all"]
    assert "baseline.x" in frame.columns
    assert np.allclose(frame["delta"], [math.exp(0.01) - 1] * 2 + [math.exp(0.01) - 1] * 2)


def test_results_to_json(tmp_path):
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config())
    path = tmp_path / "results.json"
    sa.sweep([{"x": 0.1}]).to_json(str(path))
    with pytest.raises(FileExistsError):
        sa.sweep([{"x": 0.1}]).to_json(str(path))


def test_scaled_sweep():
    sa = SensitivityAnalysis(StageModel.from_dict(lemur), lemur_space(), serial_config())
    results = sa.scaled_sweep()
    assert len(results) == 3 * 2
    assert [r.covariation for r in results[:2]] == ["none", "paired"]


def test_run_report(tmp_path):
    sa = SensitivityAnalysis(exp_model(), exp_space(), serial_config(resolution=41))
    report = sa.run()
    assert len(report.equilibrium) >= 1
    assert len(report.relative) == len(report.equilibrium) * 2
    assert len(report.scaled) == 2
    report.save(str(tmp_path))
    assert (tmp_path / "relative.csv").exists()


def test_run_with_no_equilibrium():
    topology = LifeCycleTopology("single", ("all",), (Cell(0, 0, (("growth",),)),))
    growth = VitalRateModel("growth", VitalRateCoefficients(intercept=1.0, slopes={"x": 0.1}), link="log")
    sa = SensitivityAnalysis(StageModel(topology, {"growth": growth}), exp_space(), serial_config(resolution=5))
    report = sa.run()
    assert report.equilibrium.empty
    assert len(report.relative) == 0
