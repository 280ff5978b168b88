"""
# Model Interface and Stage-Structured Implementation

This module provides the abstract model interface and the stage-structured
matrix population model that ties vital-rate models to a life-cycle
topology.

## Classes

- `Model`: Abstract base class defining the interface for all models
- `StageModel`: Vital rates + topology; covariates in, lambda out

## Key Features

- **Immutable configuration**: a `StageModel` holds the topology and the
  vital rates feeding it; nothing is mutated between evaluations
- **Selective perturbation**: any subset of vital rates can be evaluated at
  perturbed covariate values while the rest stay at baseline
- **Parallel Execution**: many covariate combinations evaluated on a thread
  pool, results returned in input order

## Example Usage

```python
from mpm_tools import StageModel
from mpm_tools.config import CoefficientConfig
from mpm_tools.topology import two_sex_juvenile_adult

models = CoefficientConfig.from_json("lemur_coefficients.json")
rates = models.bind_rates({
    "s_mj": {"model": "survival", "category": "juvenile"},
    "s_ma": {"model": "survival", "category": "adult"},
    "s_fj": {"model": "survival", "category": "juvenile"},
    "s_fa": {"model": "survival", "category": "adult"},
    "rec": "rec",
})
model = StageModel(two_sex_juvenile_adult(), rates)

# Single evaluation
lam = model.run({"dens": 40, "rain": 800, "temp": 30})

# Parallel evaluations
lams = model.run_parallel([{...}, {...}], workers=4)
```
"""

from abc import abstractmethod, ABC
from types import MappingProxyType
from typing import Any, Iterable, Mapping
import logging

import numpy as np

from mpm_tools.analysis import MatrixAnalyzer
from mpm_tools.config.coefficients import CoefficientConfig
from mpm_tools.errors import MalformedTopology, NonErgodicMatrix
from mpm_tools.topology import LifeCycleTopology, assemble, validate_rates, get_topology
from mpm_tools.utils.links import Scale
from mpm_tools.utils.parallel import ordered_map
from mpm_tools.vitalrates import Covariates, VitalRate


class Model(ABC):
    """
    Abstract base class for population models.

    A model maps one covariate combination to a scalar growth rate. Batch
    evaluation is provided on top of `run`.

    Example:
        ```python
        class ConstantModel(Model):
            def run(self, X=None):
                return 1.0

        ConstantModel().run_parallel([{}, {}])  # [1.0, 1.0]
        ```
    """

    @abstractmethod
    def run(self, X: dict[str, Any] = None) -> float:
        """
        Evaluate the model at a single covariate combination.

        Args:
            X (dict[str, Any], optional): Covariate values by name.

        Returns:
            float: Asymptotic growth rate (lambda).
        """
        pass

    def run_parallel(
        self,
        X: Iterable[dict[str, Any]] = None,
        workers: int = 4,
        parallel: bool = True,
        progress: bool = True,
    ) -> list[float | None]:
        """
        Evaluate the model at many covariate combinations.

        Args:
            X (Iterable[dict[str, Any]]): Covariate combinations.
            workers (int, optional): Number of worker threads. Defaults to 4.
            parallel (bool, optional): Use a thread pool. Defaults to True.
            progress (bool, optional): Show a progress bar. Defaults to True.

        Returns:
            list[float | None]: One lambda per combination, in input order.
                None marks a combination whose matrix had no unique real
                dominant eigenvalue; the failure is logged.
        """
        outcomes = ordered_map(
            self.run,
            X if X is not None else [],
            workers=workers,
            parallel=parallel,
            catch=(NonErgodicMatrix, np.linalg.LinAlgError),
            progress=progress,
        )
        return [value for value, _ in outcomes]


class StageModel(Model):
    """
    Stage-structured matrix population model.

    Holds a life-cycle topology and, for every rate name its formulas use,
    either a vital-rate model (`VitalRateModel`, `BoundRate`,
    `HazardSurvival`) or a constant.

    Attributes:
        topology (LifeCycleTopology): Structure of the population.
        rates (Mapping[str, VitalRate | float]): Rate name -> model or constant.
        year (int | None): Time index passed to every model, for trend terms
            and year effects. None means no trend and no year effect.
        validate (bool): Warn with `OutOfDomainRate` for predicted rates
            outside their natural domain before assembly.

    Raises:
        MalformedTopology: If a rate needed by the topology is not provided.

    Example:
        ```python
        model = StageModel(three_stage_maturation(), {
            "s_i": 0.5, "s_p": 0.7, "s_b": 0.85,
            "recruit": 0.1, "mature": maturation_model,
            "breed": 0.9, "litter": 3.0,
        })
        model.matrix({"goose": 1.2})
        ```
    """

    def __init__(
        self,
        topology: LifeCycleTopology,
        rates: Mapping[str, VitalRate | float],
        year: int = None,
        validate: bool = False,
    ):
        missing = sorted(topology.rates - set(rates))
        if missing:
            raise MalformedTopology(
                f"Topology {topology.name!r} needs vital rates {missing} that were not provided"
            )
        self.topology = topology
        self.rates = MappingProxyType(dict(rates))
        self.year = year
        self.validate = validate

    @classmethod
    def from_dict(cls, data: dict) -> "StageModel":
        """
        Create a model from a dictionary.

        Args:
            data (dict): Keys
                - 'topology': a built-in topology name, or a topology dict
                - 'sex_ratio' (optional): passed to a built-in topology
                - 'models': coefficient tables, see `CoefficientConfig`
                - 'rates': rate bindings, see `CoefficientConfig.bind_rates`
                - 'year' (optional), 'validate' (optional)
        """
        topology = data["topology"]
        if isinstance(topology, str):
            kwargs = {"sex_ratio": data["sex_ratio"]} if "sex_ratio" in data else {}
            topology = get_topology(topology, **kwargs)
        else:
            topology = LifeCycleTopology.from_dict(topology)

        models = CoefficientConfig.from_dict(data.get("models", {}))
        return cls(
            topology=topology,
            rates=models.bind_rates(data["rates"]),
            year=data.get("year"),
            validate=data.get("validate", False),
        )

    @property
    def rate_names(self) -> tuple[str, ...]:
        """Names of the rates that are predicted from covariates."""
        return tuple(name for name, rate in self.rates.items() if not _is_constant(rate))

    @property
    def scales(self) -> dict[str, Scale]:
        return {name: self.rates[name].scale for name in self.rate_names}

    def depends_on(self, rate: str, covariate: str) -> bool:
        """
        Whether vital rate `rate` has a nonzero term in `covariate`.

        Raises:
            KeyError: If the rate is unknown.
        """
        if rate not in self.rates:
            raise KeyError(f"Unknown vital rate: {rate!r}")
        model = self.rates[rate]
        return False if _is_constant(model) else model.depends_on(covariate)

    def vital_rates(
        self,
        covariates: Covariates,
        perturbed: Covariates = None,
        selected: Iterable[str] = None,
    ) -> dict[str, float]:
        """
        Predict every vital rate.

        Args:
            covariates (Mapping[str, float]): Baseline covariate values.
            perturbed (Mapping[str, float], optional): Covariate values used
                instead of the baseline for the selected rates.
            selected (Iterable[str], optional): Rates that see `perturbed`.
                Defaults to every rate.

        Returns:
            dict[str, float]: Rate name -> value on its natural scale.
        """
        selected = None if selected is None else frozenset(selected)
        values = {}
        for name, rate in self.rates.items():
            if _is_constant(rate):
                values[name] = float(rate)
                continue
            use_perturbed = perturbed is not None and (selected is None or name in selected)
            values[name] = rate.predict(perturbed if use_perturbed else covariates, year=self.year)

        if self.validate:
            validate_rates(values, self.scales)
        return values

    def matrix(
        self,
        covariates: Covariates,
        perturbed: Covariates = None,
        selected: Iterable[str] = None,
    ) -> np.ndarray:
        """Assemble the projection matrix; arguments as for `vital_rates`."""
        return assemble(self.topology, self.vital_rates(covariates, perturbed, selected))

    def growth_rate(
        self,
        covariates: Covariates,
        perturbed: Covariates = None,
        selected: Iterable[str] = None,
    ) -> float:
        """Lambda of the assembled matrix; arguments as for `vital_rates`."""
        return MatrixAnalyzer.growth_rate(self.matrix(covariates, perturbed, selected))

    def run(self, X: dict[str, Any] = None) -> float:
        """
        Lambda at one covariate combination.

        Raises:
            NonErgodicMatrix: If the matrix has no unique real dominant
                eigenvalue.
        """
        lam = self.growth_rate(X if X is not None else {})
        logging.debug(f"lambda = {lam:.6f} at {X}")
        return lam


def _is_constant(rate) -> bool:
    return isinstance(rate, (int, float))
