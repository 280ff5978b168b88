"""
# Immigration Distributions

This module provides the immigration term that can be added on top of a
one-step matrix projection, and the SciPy distribution helpers it draws from.

Immigration is estimated separately from the vital rates, so it is never part
of the projection matrix. Drawn immigrant counts can be negative when the
estimate's uncertainty is wide; how that is handled is an explicit choice.

## Classes

- `ImmigrationPolicy`: How negative draws are handled (clamp or resample)
- `Immigration`: Mean, standard deviation, receiving stage and policy

## Functions

- `get_scipy_truncated_normal`: Create SciPy truncated normal distribution
- `get_scipy_normal`: Create SciPy normal distribution

## Example Usage

```python
import numpy as np
from mpm_tools.utils.distributions import Immigration, ImmigrationPolicy

immigration = Immigration(mean=12.0, sd=6.0, stage=1, policy=ImmigrationPolicy.RESAMPLE)
draws = immigration.draw(np.random.default_rng(42), size=1000)
assert (draws >= 0).all()
```
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy.stats import truncnorm, norm


def get_scipy_truncated_normal(loc=0.0, scale=1.0, a=0.0, b=np.inf):
    """
    Create a SciPy truncated normal distribution.

    Args:
        loc (float, optional): Mean of the underlying normal. Defaults to 0.0.
        scale (float, optional): Standard deviation. Defaults to 1.0.
        a (float, optional): Lower truncation bound. Defaults to 0.0.
        b (float, optional): Upper truncation bound. Defaults to inf.

    Returns:
        scipy.stats.truncnorm: Configured truncated normal distribution.

    Example:
        ```python
        dist = get_scipy_truncated_normal(loc=5.0, scale=10.0)
        samples = dist.rvs(size=1000)  # all >= 0
        ```
    """
    a_scaled = (a - loc) / scale
    b_scaled = (b - loc) / scale
    return truncnorm(a=a_scaled, b=b_scaled, loc=loc, scale=scale)


def get_scipy_normal(loc=0.0, scale=1.0):
    """
    Create a SciPy normal distribution.

    Args:
        loc (float, optional): Mean of the distribution. Defaults to 0.0.
        scale (float, optional): Standard deviation. Defaults to 1.0.

    Returns:
        scipy.stats.norm: Configured normal distribution.
    """
    return norm(loc=loc, scale=scale)


class ImmigrationPolicy(str, Enum):
    """
    Handling of negative immigrant draws.

    Values:
        CLAMP: Draw from the normal distribution and set negative draws to zero
        RESAMPLE: Redraw until non-negative, i.e. draw from the normal
            truncated at zero
    """
    CLAMP = "clamp"
    RESAMPLE = "resample"

    @staticmethod
    def from_name(name: str) -> "ImmigrationPolicy":
        try:
            return ImmigrationPolicy(name.lower())
        except ValueError:
            raise ValueError(f"Unknown immigration policy: {name}")


@dataclass(frozen=True)
class Immigration:
    """
    Additive immigration term for one-step projections.

    There is no default policy: callers must choose how negative draws are
    treated.

    Attributes:
        mean (float): Expected number of immigrants per time step.
        sd (float): Standard deviation of the number of immigrants.
        policy (ImmigrationPolicy): Clamp or resample negative draws.
        stage (int): Index of the stage receiving immigrants. Defaults to 0.

    Raises:
        ValueError: If sd is negative, or if sd is zero with a negative mean
            under the resample policy.
    """
    mean: float
    sd: float
    policy: ImmigrationPolicy
    stage: int = 0

    def __post_init__(self):
        if isinstance(self.policy, str) and not isinstance(self.policy, ImmigrationPolicy):
            object.__setattr__(self, "policy", ImmigrationPolicy.from_name(self.policy))
        if self.sd < 0:
            raise ValueError(f"Immigration sd must be non-negative, got {self.sd}")
        if self.sd == 0 and self.mean < 0 and self.policy is ImmigrationPolicy.RESAMPLE:
            raise ValueError("Cannot resample a fixed negative immigration count")

    def distribution(self):
        """SciPy distribution the draws come from (None when sd is zero)."""
        if self.sd == 0:
            return None
        match self.policy:
            case ImmigrationPolicy.CLAMP:
                return get_scipy_normal(loc=self.mean, scale=self.sd)
            case ImmigrationPolicy.RESAMPLE:
                return get_scipy_truncated_normal(loc=self.mean, scale=self.sd, a=0.0)

    def draw(self, rng: np.random.Generator = None, size=None):
        """
        Draw immigrant counts; never negative.

        Args:
            rng (np.random.Generator, optional): Random number generator.
            size (int | tuple, optional): Output shape. A float is returned
                when None.
        """
        dist = self.distribution()
        if dist is None:
            draws = np.full(size if size is not None else (), float(self.mean))
        else:
            draws = np.asarray(dist.rvs(size=size, random_state=rng), dtype=float)
        draws = np.maximum(draws, 0.0)
        return float(draws) if size is None else draws
