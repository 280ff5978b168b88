"""
# MPM Tools

A toolkit for environmentally driven matrix population models, providing functionality for:

- **Vital-Rate Models**: Coefficient sets behind logit, log and bounded-logit links, plus survival from competing hazards
- **Life-Cycle Topologies**: Fixed matrix structures and matrix assembly from predicted vital rates
- **Matrix Analysis**: Growth rate, stable stage distribution, reproductive value, sensitivities and transient growth
- **Covariate Spaces**: Historical covariate ranges, means, paired extremes and evaluation grids
- **Sensitivity Analysis**: Near-equilibrium search, relative and Morris-style scaled sensitivities

## Main Components

- `Model`: Base class for model evaluation
- `StageModel`: Vital rates + topology; covariates in, lambda out
- `MatrixAnalyzer`: Eigenanalysis of projection matrices
- `sa`: Sensitivity analysis framework
- `config`: Covariate spaces and coefficient tables
- `utils`: Link functions, immigration draws, parallel evaluation and results

## Example Usage

```python
from mpm_tools import StageModel
from mpm_tools.config import CovariateSpace
from mpm_tools.sa import SensitivityAnalysis, SensitivityAnalysisConfig

model = StageModel.from_dict(model_data)
space = CovariateSpace.from_csv("covariates.csv", time_column="year")

sa = SensitivityAnalysis(model, space, SensitivityAnalysisConfig(resolution=20))
report = sa.run()
report.save("results/")
```
"""

from .errors import *
from .analysis import *
from .model import *
