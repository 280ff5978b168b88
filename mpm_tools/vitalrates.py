"""
# Vital-Rate Models

This module turns fitted coefficient sets and covariate values into vital
rates (survival, breeding probability, litter size, maturation) on their
natural scale.

## Classes

- `VitalRateCoefficients`: Immutable coefficient set for one vital rate
- `VitalRateModel`: Coefficients plus link function, with `predict`
- `BoundRate`: A `VitalRateModel` with its categorical selectors fixed
- `HazardSurvival`: Survival composed from independent log-link hazards

## Key Features

- **One parameterised model**: every vital rate is the same linear predictor
  (intercept, slopes, interactions, trend, random effect) behind a link tag
- **Closed categorical sets**: age classes, stages and harvest periods are
  declared per rate; anything else raises `InvalidCategory` / `InvalidPeriod`
- **Structural dependence**: `depends_on` reports whether a covariate enters
  a rate at all, so sensitivities to unused covariates are exactly zero

## Example Usage

```python
from mpm_tools.vitalrates import VitalRateCoefficients, VitalRateModel

survival = VitalRateModel(
    name="survival",
    coefficients=VitalRateCoefficients.from_dict({
        "intercept": 9.95,
        "slopes": {"dens": 0.0401, "rain": 0.0031, "temp": -0.38},
        "interactions": {"dens:rain": -0.0000466},
        "levels": {"adult": {}, "juvenile": {"intercept": -1.86, "dens": 0.0099}},
    }),
    link="logit",
)

s_juv = survival.predict({"dens": 40, "rain": 800, "temp": 30}, category="juvenile")
s_adult = survival.bind(category="adult")
```
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping
import math

from mpm_tools.errors import InvalidCategory, InvalidPeriod
from mpm_tools.utils.links import Link, Scale, inv_logit


Covariates = Mapping[str, float]
"""Type alias for a covariate combination, covariate name -> value."""


def _split_interaction(key) -> tuple[str, str]:
    if isinstance(key, str):
        parts = key.split(":")
    else:
        parts = list(key)
    if len(parts) != 2:
        raise ValueError(f"Interaction terms need exactly two covariates, got {key!r}")
    return (parts[0].strip(), parts[1].strip())


def _freeze(mapping) -> MappingProxyType:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class VitalRateCoefficients:
    """
    Immutable coefficient set for one vital rate.

    Level and period tables hold additive overrides keyed by term: the key
    "intercept", "trend", a covariate name (slope) or "a:b" (interaction).
    Overrides are added to the base value of the term.

    Attributes:
        intercept (float): Intercept on the link scale.
        slopes (Mapping[str, float]): Main effects by covariate name.
        interactions (Mapping[tuple[str, str], float]): Pairwise interaction
            coefficients.
        trend (float): Coefficient on (year - reference_year).
        reference_year (int): Year at which the trend term is zero.
        levels (Mapping[str, Mapping[str, float]]): Categorical state
            (age class, stage, sex) -> term overrides.
        periods (Mapping[str, Mapping[str, float]]): Period (e.g. harvest
            regime) -> term overrides.
        year_effects (Mapping[int, float]): Random year effects on the link
            scale, by time index.
        asymptote (float | None): Upper asymptote `a` of the asymptotic
            logistic form a * invlogit(b * (c - age) + eta).
        age_slope (float | None): Slope `b` on age in the asymptotic form.
        age_midpoint (float): Age `c` at the inflection point.
        ceiling (float): Ceiling used by the bounded-logit link.
    """
    intercept: float = 0.0
    slopes: Mapping[str, float] = field(default_factory=dict)
    interactions: Mapping[tuple[str, str], float] = field(default_factory=dict)
    trend: float = 0.0
    reference_year: int = 0
    levels: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    periods: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    year_effects: Mapping[int, float] = field(default_factory=dict)
    asymptote: float | None = None
    age_slope: float | None = None
    age_midpoint: float = 0.0
    ceiling: float = 1.0

    def __post_init__(self):
        interactions = {
            _split_interaction(k): float(v) for k, v in self.interactions.items()
        }
        object.__setattr__(self, "slopes", _freeze({k: float(v) for k, v in self.slopes.items()}))
        object.__setattr__(self, "interactions", _freeze(interactions))
        object.__setattr__(self, "levels", _freeze({k: _freeze(v) for k, v in self.levels.items()}))
        object.__setattr__(self, "periods", _freeze({k: _freeze(v) for k, v in self.periods.items()}))
        object.__setattr__(
            self, "year_effects", _freeze({int(k): float(v) for k, v in self.year_effects.items()})
        )

    @classmethod
    def from_dict(cls, data: dict) -> "VitalRateCoefficients":
        """
        Create coefficients from a plain (JSON-compatible) dictionary.

        Interaction keys are written "a:b" and year-effect keys may be strings.

        Example:
            ```python
            coefs = VitalRateCoefficients.from_dict({
                "intercept": -10.965,
                "slopes": {"dens": -0.024, "temp": 0.364},
            })
            ```
        """
        return cls(**data)

    def to_dict(self) -> dict:
        """
        Convert to a JSON-compatible dictionary, the inverse of `from_dict`.
        """
        data = {
            "intercept": self.intercept,
            "slopes": dict(self.slopes),
            "interactions": {f"{a}:{b}": v for (a, b), v in self.interactions.items()},
            "trend": self.trend,
            "reference_year": self.reference_year,
            "levels": {k: dict(v) for k, v in self.levels.items()},
            "periods": {k: dict(v) for k, v in self.periods.items()},
            "year_effects": {str(k): v for k, v in self.year_effects.items()},
            "asymptote": self.asymptote,
            "age_slope": self.age_slope,
            "age_midpoint": self.age_midpoint,
            "ceiling": self.ceiling,
        }
        return data

    def terms(self, *overrides: Mapping[str, float]):
        """
        Resolve the effective linear-predictor terms after applying overrides.

        Returns:
            tuple: (intercept, slopes, interactions, trend) with every override
                table added onto the base coefficients.
        """
        intercept = self.intercept
        trend = self.trend
        slopes = dict(self.slopes)
        interactions = dict(self.interactions)
        for table in overrides:
            for key, value in table.items():
                if key == "intercept":
                    intercept += value
                elif key == "trend":
                    trend += value
                elif ":" in key:
                    pair = _split_interaction(key)
                    interactions[pair] = interactions.get(pair, 0.0) + value
                else:
                    slopes[key] = slopes.get(key, 0.0) + value
        return intercept, slopes, interactions, trend

    @property
    def covariates(self) -> frozenset[str]:
        """Every covariate name referenced by any term, base or override."""
        names = set(self.slopes)
        for a, b in self.interactions:
            names.update((a, b))
        for table in (*self.levels.values(), *self.periods.values()):
            for key in table:
                if key in ("intercept", "trend"):
                    continue
                if ":" in key:
                    names.update(_split_interaction(key))
                else:
                    names.add(key)
        return frozenset(names)


def _select(rate: str, table: Mapping, selector, error) -> Mapping[str, float]:
    if not table:
        if selector is not None:
            raise error(rate, selector, ())
        return {}
    if selector not in table:
        raise error(rate, selector, table.keys())
    return table[selector]


@dataclass(frozen=True)
class VitalRateModel:
    """
    A vital rate's functional form: coefficients behind a link function.

    The linear predictor is

        intercept + sum(slope_i * x_i) + sum(coef_jk * x_j * x_k)
        + trend * (year - reference_year) + random_effect

    with level and period overrides applied first, and is then
    back-transformed through `link`.

    Attributes:
        name (str): Name of the vital rate, used in error messages.
        coefficients (VitalRateCoefficients): Fitted coefficients.
        link (Link): Link function. Strings are converted with
            `Link.from_name`.

    Example:
        ```python
        recruitment = VitalRateModel(
            name="rec",
            coefficients=VitalRateCoefficients(
                intercept=-10.965, slopes={"dens": -0.024, "temp": 0.364}
            ),
            link="log",
        )
        recruitment.predict({"dens": 40, "temp": 30})
        ```
    """
    name: str
    coefficients: VitalRateCoefficients
    link: Link = Link.LOGIT

    def __post_init__(self):
        if isinstance(self.link, str) and not isinstance(self.link, Link):
            object.__setattr__(self, "link", Link.from_name(self.link))
        if isinstance(self.coefficients, dict):
            object.__setattr__(
                self, "coefficients", VitalRateCoefficients.from_dict(self.coefficients)
            )
        coefs = self.coefficients
        if coefs.asymptote is not None and self.link is not Link.LOGIT:
            raise ValueError(f"Vital rate {self.name!r}: asymptote requires the logit link")
        if coefs.ceiling != 1.0 and self.link is not Link.BOUNDED_LOGIT:
            raise ValueError(f"Vital rate {self.name!r}: ceiling requires the bounded_logit link")

    @property
    def scale(self) -> Scale:
        return self.link.scale

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(self.coefficients.levels)

    @property
    def period_levels(self) -> tuple[str, ...]:
        return tuple(self.coefficients.periods)

    def _overrides(self, category, period):
        return (
            _select(self.name, self.coefficients.levels, category, InvalidCategory),
            _select(self.name, self.coefficients.periods, period, InvalidPeriod),
        )

    def linear_predictor(
        self,
        covariates: Covariates,
        category: str = None,
        period: str = None,
        year: int = None,
        random_effect: float = None,
    ) -> float:
        """
        Evaluate the linear predictor on the link scale.

        Args:
            covariates (Mapping[str, float]): Covariate values by name. Must
                contain every covariate with a term in this rate.
            category (str, optional): Categorical state, required when the
                rate declares levels.
            period (str, optional): Period selector, required when the rate
                declares periods.
            year (int, optional): Time index for the trend term and for the
                year-effect lookup. Without it the trend term is zero.
            random_effect (float, optional): Additive random effect. When None,
                `year_effects[year]` is used if present, otherwise zero.

        Raises:
            InvalidCategory: If category is not a declared level.
            InvalidPeriod: If period is not a declared period.
            KeyError: If a required covariate is missing.
        """
        intercept, slopes, interactions, trend = self.coefficients.terms(
            *self._overrides(category, period)
        )

        def value(name):
            try:
                return float(covariates[name])
            except KeyError:
                raise KeyError(f"Vital rate {self.name!r} needs covariate {name!r}") from None

        eta = intercept
        for name, coef in slopes.items():
            if coef != 0.0:
                eta += coef * value(name)
        for (a, b), coef in interactions.items():
            if coef != 0.0:
                eta += coef * value(a) * value(b)

        if year is not None:
            eta += trend * (year - self.coefficients.reference_year)
            if random_effect is None:
                random_effect = self.coefficients.year_effects.get(year, 0.0)
        if random_effect is not None:
            eta += random_effect

        return eta

    def predict(
        self,
        covariates: Covariates,
        category: str = None,
        period: str = None,
        year: int = None,
        random_effect: float = None,
        age: float = None,
    ) -> float:
        """
        Predict the vital rate on its natural scale.

        Takes the same arguments as `linear_predictor`, plus `age` for the
        asymptotic logistic form.

        Returns:
            float: invlogit(eta), exp(eta), ceiling * invlogit(eta), or
                a * invlogit(b * (c - age) + eta) for the asymptotic form.

        Raises:
            ValueError: If the asymptotic form has an age slope and no age is
                given.
        """
        eta = self.linear_predictor(covariates, category, period, year, random_effect)
        coefs = self.coefficients

        if coefs.asymptote is not None:
            if coefs.age_slope is not None:
                if age is None:
                    raise ValueError(f"Vital rate {self.name!r} needs an age")
                eta += coefs.age_slope * (coefs.age_midpoint - age)
            return float(coefs.asymptote * inv_logit(eta))

        return float(self.link.inverse(eta, ceiling=coefs.ceiling))

    def depends_on(self, covariate: str, category: str = None, period: str = None) -> bool:
        """
        Whether `covariate` enters the linear predictor with a nonzero term.

        With no selectors, every level and period is considered, so the answer
        is True if the covariate matters for any of them.
        """
        coefs = self.coefficients
        if category is None and period is None:
            tables = [()]
            tables += [(lvl,) for lvl in coefs.levels.values()]
            tables += [(per,) for per in coefs.periods.values()]
        else:
            tables = [self._overrides(category, period)]

        for overrides in tables:
            _, slopes, interactions, _ = coefs.terms(*overrides)
            if slopes.get(covariate, 0.0) != 0.0:
                return True
            if any(coef != 0.0 and covariate in pair for pair, coef in interactions.items()):
                return True
        return False

    def bind(self, category: str = None, period: str = None, age: float = None) -> "BoundRate":
        """
        Fix the categorical selectors, validating them now.

        Raises:
            InvalidCategory: If category is not a declared level.
            InvalidPeriod: If period is not a declared period.
        """
        self._overrides(category, period)
        return BoundRate(model=self, category=category, period=period, age=age)

    def to_dict(self) -> dict:
        return {"link": self.link.value, **self.coefficients.to_dict()}


@dataclass(frozen=True)
class BoundRate:
    """
    A `VitalRateModel` with category, period and age fixed.

    This is how one fitted model serves several matrix entries, e.g. a single
    survival model with levels "juvenile" and "adult".
    """
    model: VitalRateModel
    category: str = None
    period: str = None
    age: float = None

    @property
    def name(self) -> str:
        parts = [p for p in (self.category, self.period) if p is not None]
        return "/".join([self.model.name, *parts])

    @property
    def scale(self) -> Scale:
        return self.model.scale

    def predict(self, covariates: Covariates, year: int = None) -> float:
        return self.model.predict(
            covariates,
            category=self.category,
            period=self.period,
            year=year,
            age=self.age,
        )

    def depends_on(self, covariate: str) -> bool:
        return self.model.depends_on(covariate, self.category, self.period)


@dataclass(frozen=True)
class HazardSurvival:
    """
    Survival from competing hazards acting over the same interval.

    Each hazard is a log-link rate, independently parameterised (for example
    harvest mortality and natural mortality). Survival is

        S = exp(-(h_1 + h_2 + ...))

    Attributes:
        name (str): Name of the survival rate.
        hazards (tuple): Log-link `VitalRateModel` or `BoundRate` instances.

    Example:
        ```python
        survival = HazardSurvival(
            name="s_adult",
            hazards=(
                harvest.bind(period="high"),
                natural.bind(category="adult"),
            ),
        )
        survival.predict({"sea_ice": 0.3, "reindeer": 1.2})
        ```
    """
    name: str
    hazards: tuple

    def __post_init__(self):
        object.__setattr__(self, "hazards", tuple(self.hazards))
        if not self.hazards:
            raise ValueError(f"Survival {self.name!r} needs at least one hazard")
        for hazard in self.hazards:
            model = hazard.model if isinstance(hazard, BoundRate) else hazard
            if model.link is not Link.LOG:
                raise ValueError(
                    f"Hazard {model.name!r} in {self.name!r} must use the log link"
                )

    @property
    def scale(self) -> Scale:
        return Scale.PROBABILITY

    def hazard_values(self, covariates: Covariates, year: int = None) -> list[float]:
        return [h.predict(covariates, year=year) for h in self.hazards]

    def predict(self, covariates: Covariates, year: int = None) -> float:
        """Survival probability from the summed hazards."""
        return math.exp(-sum(self.hazard_values(covariates, year)))

    def depends_on(self, covariate: str) -> bool:
        return any(h.depends_on(covariate) for h in self.hazards)


VitalRate = VitalRateModel | BoundRate | HazardSurvival
"""Anything that predicts a vital rate from covariates."""
