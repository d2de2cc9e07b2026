"""Exception hierarchy for the neighborhood density / decay sweep pipeline."""


class DensityDecayError(Exception):
    """Base class for every error raised by density_decay."""


class DataValidationError(DensityDecayError, ValueError):
    """Malformed or out-of-range input (bad columns, negative sizes, NaN coordinates...)."""


class ConfigError(DataValidationError):
    """Invalid configuration value."""


class FitError(DensityDecayError, RuntimeError):
    """The model fitting backend could not produce a result for one run."""
