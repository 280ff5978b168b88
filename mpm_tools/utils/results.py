"""
# Results Management

This module provides data structures for storing, managing, and serializing
the outputs of equilibrium searches and sensitivity analyses.

## Classes

- `SensitivityResult`: One perturbation and the change in lambda it caused
- `SensitivityResults`: Collection of `SensitivityResult` with table export
- `GridSearchResult`: Near-equilibrium covariate combinations and failures
- `SensitivityReport`: Everything one full analysis run produces

## Example Usage

```python
from mpm_tools.utils.results import SensitivityResults

results = SensitivityResults(sa.sweep(found.combinations))

# Tabulate for plotting elsewhere
df = results.to_frame()

# Save results
results.to_json("relative_sensitivity.json")
```
"""

from dataclasses import dataclass, asdict, field
import json
import os

import pandas as pd


@dataclass
class SensitivityResult:
    """
    One perturbation of covariates and the resulting change in lambda.

    Attributes:
        kind (str): "relative" or "scaled".
        covariates (tuple[str, ...]): Perturbed covariate(s).
        vital_rate (str): Perturbed vital rate, or "all".
        covariation (str): "baseline" for relative results; "none" or
            "paired" for scaled results.
        baseline_id (int | str | None): Index of the baseline combination
            for relative results; "<covariate>:<covariation>" for scaled
            results.
        baseline (dict[str, float]): Baseline covariate combination (the
            combination at the covariate minimum for scaled results).
        lambda_control (float | None): Lambda at the baseline (or at the
            covariate minimum).
        lambda_perturbed (float | None): Lambda after perturbation (or at the
            covariate maximum).
        delta (float | None): Relative change (lambda_perturbed -
            lambda_control) / lambda_control, or the scaled sensitivity
            |lambda_max - lambda_min| / ((max - min) / sd).
        error (str | None): Why the result is inconclusive, if it is.

    Example:
        ```python
        result = SensitivityResult(
            kind="relative",
            covariates=("rain",),
            vital_rate="s_fa",
            covariation="baseline",
            baseline_id=3,
            baseline={"rain": 800.0, "temp": 30.1, "dens": 41.0},
            lambda_control=1.004,
            lambda_perturbed=1.011,
            delta=0.00697,
        )
        ```
    """
    kind: str
    covariates: tuple
    vital_rate: str
    covariation: str
    baseline_id: int | str | None = None
    baseline: dict = field(default_factory=dict)
    lambda_control: float | None = None
    lambda_perturbed: float | None = None
    delta: float | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def covariate(self) -> str:
        """Covariate label; "+"-joined when several were perturbed together."""
        return "+".join(self.covariates)

    def to_dict(self):
        """
        Convert the SensitivityResult to a dictionary.

        Returns:
            dict: Dictionary representation suitable for JSON serialization.
        """
        data = asdict(self)
        data["covariates"] = list(self.covariates)
        return data


class SensitivityResults(list[SensitivityResult]):
    """
    Collection of SensitivityResult instances in evaluation order.

    Example:
        ```python
        results = sa.sweep(combinations)
        print(f"{len(results.failures)} inconclusive")
        results.to_frame().groupby(["vital_rate", "covariate"])["delta"].mean()
        ```
    """

    @property
    def failures(self) -> "SensitivityResults":
        """Results that are inconclusive."""
        return SensitivityResults(r for r in self if not r.ok)

    def to_dict(self):
        return [r.to_dict() for r in self]

    def to_frame(self) -> pd.DataFrame:
        """
        Tabulate results, one row per result.

        Columns are kind, covariate, vital_rate, covariation, baseline_id,
        lambda_control, lambda_perturbed, delta, error, followed by one
        `baseline.<name>` column per baseline covariate.
        """
        columns = [
            "kind", "covariate", "vital_rate", "covariation", "baseline_id",
            "lambda_control", "lambda_perturbed", "delta", "error",
        ]
        rows = []
        for r in self:
            row = {
                "kind": r.kind,
                "covariate": r.covariate,
                "vital_rate": r.vital_rate,
                "covariation": r.covariation,
                "baseline_id": r.baseline_id,
                "lambda_control": r.lambda_control,
                "lambda_perturbed": r.lambda_perturbed,
                "delta": r.delta,
                "error": r.error,
            }
            row.update({f"baseline.{k}": v for k, v in r.baseline.items()})
            rows.append(row)
        return pd.DataFrame(rows, columns=None if rows else columns)

    def to_json(self, outfile: str):
        """
        Save the results to a JSON file.

        Note:
            Uses the "+x" mode to create a new file, will fail if file already exists.
        """
        with open(outfile, "+x") as f:
            json.dump(self.to_dict(), f)


@dataclass
class GridSearchResult:
    """
    Outcome of a near-equilibrium grid search.

    An empty `combinations` list is a legitimate outcome: no grid point
    produced lambda within tolerance of one.

    Attributes:
        combinations (list[dict[str, float]]): Qualifying covariate
            combinations, in grid order.
        lambdas (list[float]): Lambda at each qualifying combination.
        failures (list[tuple[dict[str, float], str]]): Grid points whose
            lambda could not be computed, with the reason.
        evaluated (int): Number of grid points evaluated.
    """
    combinations: list = field(default_factory=list)
    lambdas: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    evaluated: int = 0

    def __len__(self):
        return len(self.combinations)

    @property
    def empty(self) -> bool:
        return not self.combinations

    def to_frame(self) -> pd.DataFrame:
        """Qualifying combinations with their lambda as the last column."""
        df = pd.DataFrame(self.combinations)
        df["lambda"] = self.lambdas
        return df


@dataclass
class SensitivityReport:
    """
    Everything one full sensitivity analysis produces.

    Attributes:
        equilibrium (GridSearchResult): Near-equilibrium grid search.
        relative (SensitivityResults): Relative sensitivities at every
            near-equilibrium combination.
        scaled (SensitivityResults): Scaled sensitivities, with and without
            covariation.
    """
    equilibrium: GridSearchResult
    relative: SensitivityResults
    scaled: SensitivityResults

    def save(self, directory: str):
        """
        Write equilibrium.csv, relative.csv and scaled.csv into `directory`.

        The directory must already exist; existing files are overwritten.
        """
        self.equilibrium.to_frame().to_csv(os.path.join(directory, "equilibrium.csv"), index=False)
        self.relative.to_frame().to_csv(os.path.join(directory, "relative.csv"), index=False)
        self.scaled.to_frame().to_csv(os.path.join(directory, "scaled.csv"), index=False)
