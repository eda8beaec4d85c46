"""
Error taxonomy for VA calibration.

Input problems are raised once, before any Gibbs sweep runs. Numeric
degeneracy signals a broken invariant inside the sampler and is never
expected for valid inputs.
"""


class InvalidInput(ValueError):
    """Malformed predictions, labels, cause sets or run settings."""


class NumericDegeneracy(RuntimeError):
    """A Dirichlet parameter vector contained a non-positive or non-finite entry."""


class SamplingInterrupted(RuntimeError):
    """A chain was stopped cooperatively between two Gibbs sweeps."""


class ConvergenceWarning(UserWarning):
    """Chains for a tuning candidate look poorly mixed; results are still returned."""
