"""
# Covariate Space

This module provides the plausible range and empirical covariation of the
environmental covariates that drive the vital rates, built from a historical
covariate time series.

## Classes

- `Extreme`: Historical minimum or maximum of a covariate
- `CovariateSummary`: Marginal min, max, mean and standard deviation
- `CovariateSpace`: Chronological covariate series with summary queries
- `CovariateGrid`: Lazy, restartable Cartesian grid over covariate ranges

## Example Usage

```python
from mpm_tools.config.space import CovariateSpace, Extreme

space = CovariateSpace.from_csv("covariates.csv", time_column="year")

space.marginal("rain")                 # CovariateSummary(min=..., max=..., ...)
space.paired_at("rain", Extreme.MAX)   # {'temp': ..., 'dens': ...}

grid = space.grid(resolution=20)       # 20 ** 3 combinations
for combination in grid:
    ...
```
"""

from dataclasses import dataclass, asdict
from enum import Enum
from itertools import product
from typing import Iterator, Sequence

import numpy as np
import pandas as pd


# Grids over more covariates than this need an explicit size limit
MAX_UNBOUNDED_DIMENSIONS = 3


class Extreme(str, Enum):
    """Historical extreme of a covariate."""
    MIN = "min"
    MAX = "max"

    @staticmethod
    def from_name(name: str) -> "Extreme":
        try:
            return Extreme(name.lower())
        except ValueError:
            raise ValueError(f"Unknown extreme: {name}")


@dataclass(frozen=True)
class CovariateSummary:
    """
    Marginal statistics of one covariate over the historical series.

    Attributes:
        min (float): Minimum observed value.
        max (float): Maximum observed value.
        mean (float): Mean.
        sd (float): Sample standard deviation (ddof=1).
    """
    min: float
    max: float
    mean: float
    sd: float

    @property
    def range(self) -> float:
        return self.max - self.min

    def to_dict(self) -> dict:
        return asdict(self)


class CovariateGrid:
    """
    Every combination of evenly spaced covariate values.

    Each covariate is discretised into `resolution` points between its
    marginal min and max; the grid is their Cartesian product, with the
    first covariate varying slowest. Iterating yields a new dict per point
    and can be repeated any number of times.

    Attributes:
        axes (dict[str, np.ndarray]): Discretised values per covariate.

    Example:
        ```python
        grid = space.grid(resolution=5, covariates=["rain", "temp"])
        len(grid)                 # 25
        first = next(iter(grid))  # {'rain': min_rain, 'temp': min_temp}
        ```
    """

    def __init__(self, axes: dict[str, np.ndarray], fixed: dict[str, float] = None):
        self.axes = {name: np.asarray(values, dtype=float) for name, values in axes.items()}
        self.fixed = dict(fixed or {})

    def __len__(self) -> int:
        return int(np.prod([len(v) for v in self.axes.values()], dtype=np.int64))

    def __iter__(self) -> Iterator[dict[str, float]]:
        names = list(self.axes)
        for values in product(*self.axes.values()):
            yield {**self.fixed, **{name: float(v) for name, v in zip(names, values)}}

    def to_frame(self) -> pd.DataFrame:
        """Materialise the grid as a DataFrame, one row per combination."""
        return pd.DataFrame(list(self))


class CovariateSpace:
    """
    Historical covariate series and the statistics derived from it.

    Rows are time points in chronological order, columns are covariates.
    The series is copied on construction and never modified; transformations
    return a new space.

    Attributes:
        data (pd.DataFrame): Chronologically ordered covariate values.

    Example:
        ```python
        import pandas as pd
        from mpm_tools.config.space import CovariateSpace

        df = pd.DataFrame({
            "year": [2001, 2002, 2003],
            "rain": [640.0, 910.0, 780.0],
            "temp": [31.2, 29.8, 30.5],
        })
        space = CovariateSpace(df.set_index("year"))
        space.means()  # {'rain': 776.67, 'temp': 30.5}
        ```
    """

    def __init__(self, data: pd.DataFrame):
        if data.empty:
            raise ValueError("Covariate series is empty")
        data = data.sort_index(kind="stable")
        non_numeric = [c for c in data.columns if not pd.api.types.is_numeric_dtype(data[c])]
        if non_numeric:
            raise ValueError(f"Covariates must be numeric, got {non_numeric}")
        self.data = data.astype(float)

    @classmethod
    def from_frame(cls, data: pd.DataFrame, time_column: str = None) -> "CovariateSpace":
        """
        Create a space from a DataFrame, optionally indexing by a time column.
        """
        if time_column is not None:
            data = data.set_index(time_column)
        return cls(data)

    @classmethod
    def from_csv(cls, infile: str, time_column: str = None, columns: Sequence[str] = None) -> "CovariateSpace":
        """
        Load a covariate series from a CSV file.

        Args:
            infile (str): Path to the CSV file.
            time_column (str, optional): Column holding the time index.
            columns (Sequence[str], optional): Covariates to keep. Defaults
                to every column other than the time column.
        """
        data = pd.read_csv(infile)
        if time_column is not None:
            data = data.set_index(time_column)
        if columns is not None:
            data = data[list(columns)]
        return cls(data)

    @property
    def names(self) -> list[str]:
        return list(self.data.columns)

    def _column(self, name: str) -> pd.Series:
        if name not in self.data.columns:
            raise KeyError(f"Unknown covariate: {name!r}; expected one of {self.names}")
        return self.data[name]

    def marginal(self, name: str) -> CovariateSummary:
        """
        Marginal summary statistics of one covariate.

        Raises:
            KeyError: If the covariate is unknown.
        """
        col = self._column(name)
        return CovariateSummary(
            min=float(col.min()),
            max=float(col.max()),
            mean=float(col.mean()),
            sd=float(col.std(ddof=1)),
        )

    def means(self) -> dict[str, float]:
        """Mean of every covariate."""
        return {name: float(v) for name, v in self.data.mean().items()}

    def paired_at(self, name: str, extreme: Extreme) -> dict[str, float]:
        """
        Values of the other covariates when `name` was at its historical extreme.

        When several time points share the extreme value, the first in
        chronological order is used.

        Args:
            name (str): Covariate at its extreme.
            extreme (Extreme | str): Extreme.MIN or Extreme.MAX.

        Returns:
            dict[str, float]: Every other covariate's value at that time point.

        Example:
            ```python
            space.paired_at("rain", Extreme.MAX)  # {'temp': 29.8}
            ```
        """
        extreme = Extreme.from_name(extreme) if isinstance(extreme, str) else extreme
        col = self._column(name)
        target = col.max() if extreme is Extreme.MAX else col.min()
        position = int(np.flatnonzero((col == target).to_numpy())[0])
        row = self.data.iloc[position]
        return {k: float(v) for k, v in row.items() if k != name}

    def at_extreme(self, name: str, extreme: Extreme, paired: bool) -> dict[str, float]:
        """
        Full covariate combination with `name` at its extreme.

        Other covariates are at their means, or at their co-occurring values
        when `paired` is True.
        """
        extreme = Extreme.from_name(extreme) if isinstance(extreme, str) else extreme
        summary = self.marginal(name)
        others = self.paired_at(name, extreme) if paired else self.means()
        value = summary.max if extreme is Extreme.MAX else summary.min
        return {**others, name: value}

    def grid(
        self,
        resolution: int,
        covariates: Sequence[str] = None,
        limit: int = None,
        fixed: dict[str, float] = None,
    ) -> CovariateGrid:
        """
        Evenly spaced Cartesian grid over the covariates' marginal ranges.

        The grid has resolution ** len(covariates) points. Grids over more
        than three covariates must pass `limit` explicitly.

        Args:
            resolution (int): Points per covariate, at least 1. One point
                means the covariate's minimum.
            covariates (Sequence[str], optional): Covariates to vary.
                Defaults to every covariate.
            limit (int, optional): Maximum number of grid points.
            fixed (dict[str, float], optional): Covariates held at a fixed
                value in every combination (e.g. lagged covariates).

        Returns:
            CovariateGrid: Lazy, restartable grid.

        Raises:
            ValueError: If resolution < 1, if more than three covariates are
                requested without a limit, or if the grid exceeds the limit.
        """
        if resolution < 1:
            raise ValueError(f"resolution must be at least 1, got {resolution}")
        covariates = list(covariates) if covariates is not None else self.names
        if limit is None and len(covariates) > MAX_UNBOUNDED_DIMENSIONS:
            raise ValueError(
                f"A grid over {len(covariates)} covariates has {resolution}^{len(covariates)} "
                f"points; pass limit explicitly"
            )
        size = resolution ** len(covariates)
        if limit is not None and size > limit:
            raise ValueError(f"Grid has {size} points, more than the limit of {limit}")

        axes = {}
        for name in covariates:
            summary = self.marginal(name)
            axes[name] = np.linspace(summary.min, summary.max, resolution)
        return CovariateGrid(axes, fixed)

    def detrend(self, name: str) -> "CovariateSpace":
        """
        Remove a least-squares linear trend over time, keeping the mean.

        The time axis is the index when numeric, otherwise the row position.
        """
        col = self._column(name)
        index = self.data.index
        t = index.to_numpy(dtype=float) if pd.api.types.is_numeric_dtype(index) else np.arange(len(col), dtype=float)
        slope, intercept = np.polyfit(t, col.to_numpy(), deg=1)
        data = self.data.copy()
        data[name] = col.to_numpy() - (slope * t + intercept) + col.mean()
        return CovariateSpace(data)

    def standardize(self, names: Sequence[str] = None) -> "CovariateSpace":
        """Z-score covariates (sample standard deviation)."""
        names = list(names) if names is not None else self.names
        data = self.data.copy()
        for name in names:
            summary = self.marginal(name)
            if summary.sd == 0 or np.isnan(summary.sd):
                raise ValueError(f"Covariate {name!r} has no variation to standardize")
            data[name] = (data[name] - summary.mean) / summary.sd
        return CovariateSpace(data)

    def with_lag(self, name: str, suffix: str = "_lag1") -> "CovariateSpace":
        """
        Add the previous time step's value of a covariate as `<name><suffix>`.

        The first time point has no predecessor and is dropped.
        """
        col = self._column(name)
        data = self.data.copy()
        data[f"{name}{suffix}"] = col.shift(1)
        return CovariateSpace(data.iloc[1:])
