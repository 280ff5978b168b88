import numpy as np
import pytest
from mpm_tools.utils.distributions import (
    Immigration,
    ImmigrationPolicy,
    get_scipy_truncated_normal,
    get_scipy_normal,
)


def test_policy_from_name():
    assert ImmigrationPolicy.from_name("CLAMP") is ImmigrationPolicy.CLAMP
    with pytest.raises(ValueError):
        ImmigrationPolicy.from_name("reflect")


def test_policy_strings_are_converted():
    assert Immigration(mean=1.0, sd=1.0, policy="resample").policy is ImmigrationPolicy.RESAMPLE


def test_resample_draws_are_non_negative():
    immigration = Immigration(mean=-2.0, sd=5.0, policy=ImmigrationPolicy.RESAMPLE)
    draws = immigration.draw(np.random.default_rng(0), size=2000)
    assert draws.shape == (2000,)
    assert np.all(draws >= 0)
    assert np.all(draws > 0)


def test_clamp_draws_are_non_negative():
    immigration = Immigration(mean=-2.0, sd=5.0, policy=ImmigrationPolicy.CLAMP)
    draws = immigration.draw(np.random.default_rng(0), size=2000)
    assert np.all(draws >= 0)
    assert np.any(draws == 0)


def test_single_draw_is_a_float():
    immigration = Immigration(mean=12.0, sd=6.0, policy=ImmigrationPolicy.CLAMP)
    assert isinstance(immigration.draw(np.random.default_rng(1)), float)


def test_fixed_immigration():
    assert Immigration(mean=3.0, sd=0.0, policy="clamp").draw() == 3.0
    assert Immigration(mean=-3.0, sd=0.0, policy="clamp").draw() == 0.0


def test_invalid_immigration():
    with pytest.raises(ValueError):
        Immigration(mean=1.0, sd=-1.0, policy="clamp")
    with pytest.raises(ValueError):
        Immigration(mean=-1.0, sd=0.0, policy="resample")


def test_scipy_helpers():
    dist = get_scipy_truncated_normal(loc=5.0, scale=10.0)
    assert dist.ppf(0.0) == pytest.approx(0.0)
    assert get_scipy_normal(loc=2.0, scale=3.0).mean() == pytest.approx(2.0)
