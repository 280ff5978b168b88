"""
# Sensitivity Analysis

This module provides covariate sensitivity analysis for matrix population
models: how the asymptotic growth rate responds to changes in each
environmental covariate, through each vital rate.

## Components

- `SensitivityAnalysis`: Equilibrium search, perturbation sweeps and scaled sensitivities
- `SensitivityAnalysisConfig`: Tolerance, resolution, fraction and execution settings
- `Covariation`: Other covariates at their means or at co-occurring values

## Example Usage

```python
from mpm_tools.sa import SensitivityAnalysis, SensitivityAnalysisConfig, Covariation

config = SensitivityAnalysisConfig.from_json("sa_config.json")
sa = SensitivityAnalysis(model, space, config)

found = sa.find_equilibrium_combinations()
relative = sa.sweep(found.combinations)
scaled = sa.scaled_sensitivity("rain", Covariation.PAIRED)
```
"""

from .sa import *
from .config import *
