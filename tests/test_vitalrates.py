import math
import numpy as np
import pytest
from mpm_tools.errors import InvalidCategory, InvalidPeriod
from mpm_tools.utils.links import Scale, inv_logit
from mpm_tools.vitalrates import VitalRateCoefficients, VitalRateModel, HazardSurvival


def lemur_survival() -> VitalRateModel:
    return VitalRateModel(
        name="survival",
        coefficients=VitalRateCoefficients.from_dict({
            "intercept": 9.95,
            "slopes": {"dens": 0.0401, "rain": 0.0031, "temp": -0.38},
            "interactions": {"dens:rain": -0.0000466},
            "levels": {
                "female_adult": {},
                "female_juvenile": {"intercept": -1.86, "dens": 0.0099},
                "male_adult": {"intercept": -1.74, "rain": 0.0013},
                "male_juvenile": {"intercept": -3.6, "dens": 0.0099, "rain": 0.0013},
            },
        }),
        link="logit",
    )


def lemur_recruitment() -> VitalRateModel:
    return VitalRateModel(
        name="rec",
        coefficients=VitalRateCoefficients(intercept=-10.965, slopes={"dens": -0.024, "temp": 0.364}),
        link="log",
    )


covariates = {"dens": 40.0, "rain": 800.0, "temp": 30.0}


def test_intercept_only_logistic():
    model = VitalRateModel("s", VitalRateCoefficients(intercept=0.8, slopes={"rain": 0.5}))
    assert model.predict({"rain": 0.0}) == pytest.approx(inv_logit(0.8))


def test_asymptote_form_without_covariate_effects():
    coefs = VitalRateCoefficients(intercept=0.4, asymptote=0.9)
    model = VitalRateModel("bp", coefs, link="logit")
    assert model.predict({}) == pytest.approx(0.9 * inv_logit(0.4))


def test_asymptote_form_with_age():
    coefs = VitalRateCoefficients(intercept=0.4, asymptote=0.9, age_slope=1.5, age_midpoint=2.0)
    model = VitalRateModel("bp", coefs, link="logit")
    assert model.predict({}, age=2.0) == pytest.approx(0.9 * inv_logit(0.4))
    assert model.predict({}, age=1.0) == pytest.approx(0.9 * inv_logit(0.4 + 1.5))
    with pytest.raises(ValueError):
        model.predict({})


def test_log_link_prediction():
    rec = lemur_recruitment()
    expected = math.exp(-10.965 - 0.024 * 40.0 + 0.364 * 30.0)
    assert rec.predict(covariates) == pytest.approx(expected)


def test_interaction_and_level_overrides():
    survival = lemur_survival()
    eta = (9.95 - 1.86) + (0.0401 + 0.0099) * 40.0 + 0.0031 * 800.0 - 0.38 * 30.0 - 0.0000466 * 40.0 * 800.0
    assert survival.predict(covariates, category="female_juvenile") == pytest.approx(inv_logit(eta))


def test_trend_and_year_effects():
    coefs = VitalRateCoefficients(
        intercept=-0.5, trend=0.1, reference_year=2000, year_effects={"2005": 0.3}
    )
    model = VitalRateModel("s", coefs)
    assert model.linear_predictor({}) == pytest.approx(-0.5)
    assert model.linear_predictor({}, year=2010) == pytest.approx(0.5)
    assert model.linear_predictor({}, year=2005) == pytest.approx(-0.5 + 0.5 + 0.3)
    assert model.linear_predictor({}, year=2005, random_effect=0.0) == pytest.approx(0.0)
    assert model.linear_predictor({}, random_effect=0.2) == pytest.approx(-0.3)


def test_unknown_category_is_rejected():
    survival = lemur_survival()
    with pytest.raises(InvalidCategory):
        survival.predict(covariates, category="calf")
    with pytest.raises(InvalidCategory):
        survival.predict(covariates)


def test_category_on_model_without_levels_is_rejected():
    with pytest.raises(InvalidCategory):
        lemur_recruitment().predict(covariates, category="adult")


def test_invalid_category_is_a_value_error():
    with pytest.raises(ValueError):
        lemur_survival().bind(category="calf")


def test_unknown_period_is_rejected():
    harvest = VitalRateModel(
        "harvest",
        VitalRateCoefficients(intercept=-2.0, periods={"low": {}, "high": {"intercept": 0.7}}),
        link="log",
    )
    assert harvest.predict({}, period="high") == pytest.approx(math.exp(-1.3))
    with pytest.raises(InvalidPeriod):
        harvest.predict({}, period="medium")
    with pytest.raises(InvalidPeriod):
        harvest.predict({})


def test_missing_covariate_raises_key_error():
    with pytest.raises(KeyError):
        lemur_recruitment().predict({"dens": 40.0})


def test_zero_coefficient_does_not_need_covariate():
    model = VitalRateModel("s", VitalRateCoefficients(intercept=1.0, slopes={"rain": 0.0}))
    assert model.predict({}) == pytest.approx(inv_logit(1.0))


def test_depends_on():
    survival = lemur_survival()
    rec = lemur_recruitment()
    assert survival.depends_on("rain")
    assert not rec.depends_on("rain")
    assert rec.depends_on("temp")

    model = VitalRateModel(
        "s",
        VitalRateCoefficients(
            slopes={"temp": 0.0},
            interactions={"dens:rain": 0.01},
            levels={"adult": {}, "juvenile": {"temp": 0.2}},
        ),
    )
    assert model.depends_on("dens")
    assert model.depends_on("temp")
    assert not model.depends_on("temp", category="adult")
    assert model.depends_on("temp", category="juvenile")
    assert not model.depends_on("snow")


def test_bind_matches_predict():
    survival = lemur_survival()
    bound = survival.bind(category="male_adult")
    assert bound.predict(covariates) == survival.predict(covariates, category="male_adult")
    assert bound.name == "survival/male_adult"
    assert bound.scale is Scale.PROBABILITY


def test_hazard_survival():
    h1 = VitalRateModel("hunting", VitalRateCoefficients(intercept=math.log(0.1)), link="log")
    h2 = VitalRateModel("natural", VitalRateCoefficients(intercept=math.log(0.2)), link="log")
    survival = HazardSurvival("s_adult", (h1, h2))
    assert survival.predict({}) == pytest.approx(math.exp(-0.3))
    assert survival.scale is Scale.PROBABILITY
    assert not survival.depends_on("sea_ice")


def test_hazard_survival_with_bound_hazards():
    harvest = VitalRateModel(
        "harvest",
        VitalRateCoefficients(intercept=-2.0, slopes={"sea_ice": -0.5}, periods={"low": {}, "high": {"intercept": 0.7}}),
        link="log",
    )
    natural = VitalRateModel("natural", VitalRateCoefficients(intercept=-1.5), link="log")
    survival = HazardSurvival("s_adult", (harvest.bind(period="high"), natural))
    expected = math.exp(-(math.exp(-1.3 - 0.5 * 0.4) + math.exp(-1.5)))
    assert survival.predict({"sea_ice": 0.4}) == pytest.approx(expected)
    assert survival.depends_on("sea_ice")


def test_hazard_survival_requires_log_link():
    h = VitalRateModel("h", VitalRateCoefficients(intercept=-1.0), link="logit")
    with pytest.raises(ValueError):
        HazardSurvival("s", (h,))


def test_link_specific_options_are_checked():
    with pytest.raises(ValueError):
        VitalRateModel("r", VitalRateCoefficients(asymptote=0.8), link="log")
    with pytest.raises(ValueError):
        VitalRateModel("m", VitalRateCoefficients(ceiling=0.5), link="logit")


def test_bounded_logit_model():
    model = VitalRateModel("mature", VitalRateCoefficients(intercept=0.0, ceiling=0.5), link="bounded_logit")
    assert model.predict({}) == pytest.approx(0.25)


def test_predictions_stay_in_natural_domain():
    rng = np.random.default_rng(1)
    for intercept in rng.normal(0, 5, size=50):
        coefs = VitalRateCoefficients(intercept=float(intercept))
        p = VitalRateModel("p", coefs, link="logit").predict({})
        r = VitalRateModel("r", coefs, link="log").predict({})
        assert 0.0 <= p <= 1.0
        assert r > 0.0


def test_positive_coefficient_is_monotone():
    coefs = VitalRateCoefficients(intercept=-1.0, slopes={"temp": 0.05})
    x = {"temp": 25.0}
    x_up = {"temp": 25.0 * 1.1}
    for link in ["logit", "log"]:
        model = VitalRateModel("r", coefs, link=link)
        assert model.predict(x_up) > model.predict(x)


def test_coefficients_dict_round_trip():
    coefs = lemur_survival().coefficients
    again = VitalRateCoefficients.from_dict(coefs.to_dict())
    assert again.to_dict() == coefs.to_dict()
    assert again.interactions[("dens", "rain")] == -0.0000466


def test_coefficients_are_immutable():
    coefs = lemur_survival().coefficients
    with pytest.raises(TypeError):
        coefs.slopes["dens"] = 1.0
