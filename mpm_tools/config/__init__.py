"""
# Configuration Management

This module provides the inputs of an analysis: the historical covariate
space and the fitted vital-rate coefficient tables.

## Components

- **CovariateSpace**: Covariate ranges, means, paired extremes and grids
- **CoefficientConfig**: Vital-rate models loaded from coefficient tables

## Example Usage

```python
from mpm_tools.config import CovariateSpace, CoefficientConfig

space = CovariateSpace.from_csv("covariates.csv", time_column="year")
space.marginal("rain")

models = CoefficientConfig.from_json("coefficients.json")
models["survival"].predict(space.means(), category="adult")
```
"""

from .space import *
from .coefficients import *
