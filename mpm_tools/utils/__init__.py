"""
# Utilities

This module provides link functions, immigration distributions, parallel
evaluation and results management for the mpm_tools package.

## Components

- **links**: Inverse link functions and the `Link` enumeration
- **distributions**: Immigration term and its SciPy distributions
- **parallel**: Ordered thread-pool map with a progress bar
- **results**: Data structures for storing and exporting sensitivity results

## Example Usage

```python
from mpm_tools.utils.links import Link
from mpm_tools.utils.distributions import Immigration, ImmigrationPolicy
from mpm_tools.utils.results import SensitivityResults

p = Link.LOGIT.inverse(0.4)
immigration = Immigration(mean=12.0, sd=6.0, policy=ImmigrationPolicy.CLAMP)
```
"""
