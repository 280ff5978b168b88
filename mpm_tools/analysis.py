"""
# Matrix Analysis

This module computes the asymptotic and one-step properties of population
projection matrices: growth rate (lambda), stable stage distribution,
reproductive values, eigenvalue sensitivities and elasticities, transient
growth from an observed stage vector, and one-step projection.

## Classes

- `MatrixAnalyzer`: Static methods for eigenanalysis of projection matrices

## Dominant Eigenvalue

The dominant eigenvalue is taken as the real, non-negative eigenvalue whose
modulus equals the spectral radius (the Perron root). For imprimitive
(periodic) matrices other eigenvalues share that modulus; the Perron root is
still returned, e.g. [[0, 2], [0.5, 0]] has eigenvalues +1 and -1 and lambda
is 1. `NonErgodicMatrix` is raised when no real eigenvalue sits at the
spectral radius, when the matrix is not finite, and, for the eigenvectors,
when the dominant eigenvalue is repeated (the vector is then not unique).

## Example Usage

```python
import numpy as np
from mpm_tools.analysis import MatrixAnalyzer

A = np.array([[0.0, 1.5], [0.5, 0.8]])
lam = MatrixAnalyzer.growth_rate(A)
w = MatrixAnalyzer.stable_distribution(A)
v = MatrixAnalyzer.reproductive_value(A)
r = MatrixAnalyzer.transient_growth(A, [10, 40])
```
"""

import numpy as np
from numpy.typing import ArrayLike
from scipy import linalg

from mpm_tools.errors import NonErgodicMatrix
from mpm_tools.utils.distributions import Immigration


# Relative tolerance for eigenvalues that share the spectral radius
EIG_RTOL = 1e-8
# Relative tolerance for counting repeats of the dominant eigenvalue
REPEAT_RTOL = 1e-6


class MatrixAnalyzer:
    """
    Eigenanalysis of population projection matrices.

    All methods are static and pure; matrices are never modified.

    Example:
        ```python
        from mpm_tools.analysis import MatrixAnalyzer
        from mpm_tools.topology import assemble, five_stage_plus_group

        A = assemble(five_stage_plus_group(), rates)
        if MatrixAnalyzer.growth_rate(A) > 1:
            print("growing")
        ```
    """

    @staticmethod
    def _as_matrix(matrix: ArrayLike) -> np.ndarray:
        A = np.asarray(matrix, dtype=float)
        if A.ndim != 2 or A.shape[0] != A.shape[1]:
            raise ValueError(f"Projection matrix must be square, got shape {A.shape}")
        if not np.all(np.isfinite(A)):
            raise NonErgodicMatrix("Projection matrix has non-finite entries")
        return A

    @staticmethod
    def _dominant(matrix: ArrayLike):
        """
        Eigen-decompose and locate the Perron root.

        Returns:
            tuple: (eigenvalues, left vectors, right vectors, index of the
                dominant eigenvalue, multiplicity of the dominant eigenvalue)
        """
        A = MatrixAnalyzer._as_matrix(matrix)
        w, vl, vr = linalg.eig(A, left=True, right=True)

        radius = np.max(np.abs(w))
        tol = EIG_RTOL * max(radius, 1.0)

        at_radius = np.abs(np.abs(w) - radius) <= tol
        real_nonneg = (np.abs(w.imag) <= tol) & (w.real >= -tol)
        candidates = np.flatnonzero(at_radius & real_nonneg)

        if candidates.size == 0:
            raise NonErgodicMatrix(
                f"No real eigenvalue at the spectral radius {radius:.6g}: "
                f"{np.round(w[at_radius], 6).tolist()}"
            )

        idx = candidates[np.argmax(w.real[candidates])]
        multiplicity = int(np.sum(np.abs(w - w[idx]) <= REPEAT_RTOL * max(radius, 1.0)))

        return w, vl, vr, idx, multiplicity

    @staticmethod
    def _normalise(vector: np.ndarray, what: str) -> np.ndarray:
        v = np.real(vector)
        total = v.sum()
        if total == 0 or not np.isfinite(total):
            raise NonErgodicMatrix(f"Cannot normalise the {what}")
        return v / total

    @staticmethod
    def growth_rate(matrix: ArrayLike) -> float:
        """
        Asymptotic population growth rate (dominant eigenvalue).

        Args:
            matrix (array-like): Square non-negative projection matrix.

        Returns:
            float: lambda. 1 is equilibrium, > 1 growth, < 1 decline.

        Raises:
            NonErgodicMatrix: If no real eigenvalue sits at the spectral radius.
            ValueError: If the matrix is not square.

        Example:
            ```python
            MatrixAnalyzer.growth_rate([[0, 2], [0.5, 0]])  # 1.0
            MatrixAnalyzer.growth_rate([[0.93]])            # 0.93
            ```
        """
        w, _, _, idx, _ = MatrixAnalyzer._dominant(matrix)
        return float(w[idx].real)

    @staticmethod
    def stable_distribution(matrix: ArrayLike) -> np.ndarray:
        """
        Stable stage distribution: the dominant right eigenvector, summing to 1.

        Raises:
            NonErgodicMatrix: If the dominant eigenvalue is not unique.
        """
        _, _, vr, idx, multiplicity = MatrixAnalyzer._dominant(matrix)
        if multiplicity > 1:
            raise NonErgodicMatrix("Dominant eigenvalue is repeated; stable distribution is not unique")
        return MatrixAnalyzer._normalise(vr[:, idx], "stable stage distribution")

    @staticmethod
    def reproductive_value(matrix: ArrayLike) -> np.ndarray:
        """
        Reproductive values: the dominant left eigenvector, summing to 1.

        Raises:
            NonErgodicMatrix: If the dominant eigenvalue is not unique.
        """
        _, vl, _, idx, multiplicity = MatrixAnalyzer._dominant(matrix)
        if multiplicity > 1:
            raise NonErgodicMatrix("Dominant eigenvalue is repeated; reproductive value is not unique")
        return MatrixAnalyzer._normalise(vl[:, idx], "reproductive value")

    @staticmethod
    def sensitivities(matrix: ArrayLike) -> np.ndarray:
        """
        Eigenvalue sensitivities d(lambda)/d(a_ij) = v_i * w_j / <v, w>.

        Returned for every cell, including structural zeros.
        """
        w = MatrixAnalyzer.stable_distribution(matrix)
        v = MatrixAnalyzer.reproductive_value(matrix)
        return np.outer(v, w) / np.dot(v, w)

    @staticmethod
    def elasticities(matrix: ArrayLike) -> np.ndarray:
        """
        Proportional sensitivities (a_ij / lambda) * d(lambda)/d(a_ij).

        Elasticities sum to 1 and are exactly zero on structural zeros.
        """
        A = MatrixAnalyzer._as_matrix(matrix)
        lam = MatrixAnalyzer.growth_rate(A)
        if lam == 0:
            raise NonErgodicMatrix("Elasticities are undefined for lambda = 0")
        return A * MatrixAnalyzer.sensitivities(A) / lam

    @staticmethod
    def transient_growth(matrix: ArrayLike, stage_vector: ArrayLike) -> float:
        """
        One-step growth ratio of an observed (not stable) stage vector.

        Args:
            matrix (array-like): Square projection matrix.
            stage_vector (array-like): Observed abundance per stage.

        Returns:
            float: sum(A @ n) / sum(n)

        Raises:
            ValueError: If the vector length does not match the matrix or the
                vector sums to zero.
        """
        A = MatrixAnalyzer._as_matrix(matrix)
        n = np.asarray(stage_vector, dtype=float)
        if n.shape != (A.shape[0],):
            raise ValueError(f"Stage vector has shape {n.shape}, expected ({A.shape[0]},)")
        total = n.sum()
        if total == 0:
            raise ValueError("Stage vector sums to zero")
        return float((A @ n).sum() / total)

    @staticmethod
    def is_primitive(matrix: ArrayLike) -> bool:
        """
        Whether a non-negative matrix is primitive.

        Uses Wielandt's bound: A is primitive iff A^((n-1)^2 + 1) > 0.
        """
        A = MatrixAnalyzer._as_matrix(matrix)
        if np.any(A < 0):
            return False
        pattern = (A > 0).astype(float)
        power = pattern
        for _ in range((A.shape[0] - 1) ** 2):
            power = np.minimum(power @ pattern, 1.0)
        return bool(np.all(power > 0))

    @staticmethod
    def project(
        matrix: ArrayLike,
        stage_vector: ArrayLike,
        immigration: Immigration = None,
        rng: np.random.Generator = None,
    ) -> np.ndarray:
        """
        Project a stage vector one time step, optionally adding immigrants.

        Immigration is added after the matrix multiplication, into
        `immigration.stage`, and never enters the matrix itself.

        Args:
            matrix (array-like): Square projection matrix.
            stage_vector (array-like): Current abundance per stage.
            immigration (Immigration, optional): Immigration term.
            rng (np.random.Generator, optional): Generator for the draw.

        Returns:
            np.ndarray: Abundance per stage at the next time step.
        """
        A = MatrixAnalyzer._as_matrix(matrix)
        n = np.asarray(stage_vector, dtype=float)
        if n.shape != (A.shape[0],):
            raise ValueError(f"Stage vector has shape {n.shape}, expected ({A.shape[0]},)")

        nxt = A @ n
        if immigration is not None:
            if not 0 <= immigration.stage < A.shape[0]:
                raise ValueError(f"Immigration stage {immigration.stage} is outside the matrix")
            nxt[immigration.stage] += immigration.draw(rng)
        return nxt
