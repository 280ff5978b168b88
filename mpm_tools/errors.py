"""
# Errors

Exception and warning types raised by mpm_tools.

## Classes

- `MPMError`: Base class for every error raised by the package
- `InvalidCategory`: Categorical selector outside a vital rate's declared levels
- `InvalidPeriod`: Period selector outside a vital rate's declared periods
- `MalformedTopology`: Life-cycle topology that cannot produce a valid matrix
- `NonErgodicMatrix`: Matrix without a unique real dominant eigenvalue
- `OutOfDomainRate`: Warning for vital rates outside their natural domain

## Example Usage

```python
from mpm_tools.errors import NonErgodicMatrix

try:
    lam = growth_rate(matrix)
except NonErgodicMatrix as e:
    print(f"Inconclusive combination: {e}")
```
"""


class MPMError(Exception):
    """Base class for mpm_tools errors."""


class InvalidCategory(MPMError, ValueError):
    """
    Raised when a categorical state is not one of a vital rate's levels.

    Attributes:
        rate (str): Name of the vital rate that rejected the selector.
        category: The rejected selector.
        allowed (tuple[str]): Levels the vital rate recognises.
    """
    def __init__(self, rate: str, category, allowed):
        self.rate = rate
        self.category = category
        self.allowed = tuple(allowed)
        super().__init__(
            f"Unknown category {category!r} for vital rate {rate!r}; "
            f"expected one of {list(self.allowed)}"
        )


class InvalidPeriod(MPMError, ValueError):
    """
    Raised when a period selector is not one of a vital rate's periods.

    Attributes:
        rate (str): Name of the vital rate that rejected the selector.
        period: The rejected selector.
        allowed (tuple[str]): Periods the vital rate recognises.
    """
    def __init__(self, rate: str, period, allowed):
        self.rate = rate
        self.period = period
        self.allowed = tuple(allowed)
        super().__init__(
            f"Unknown period {period!r} for vital rate {rate!r}; "
            f"expected one of {list(self.allowed)}"
        )


class MalformedTopology(MPMError):
    """Raised when a topology is inconsistent with its stage count or rates."""


class NonErgodicMatrix(MPMError):
    """Raised when no unique real dominant eigenvalue can be identified."""


class OutOfDomainRate(UserWarning):
    """Warning for a vital rate outside [0, 1] (probabilities) or <= 0 (rates)."""
