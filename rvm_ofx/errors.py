"""
Error taxonomy for the matting core.

Errors are raised where they are detected (pixel format checks in the
adapter, model resolution in the registry) and only turned into a host
status code at the plugin dispatch boundary.
"""


class MattingError(Exception):
    """Base class for all errors raised by rvm_ofx."""


class UnsupportedFormat(MattingError):
    """Pixel layout or bit depth outside of the supported set."""


class ModelLoadError(MattingError):
    """The inference model could not be loaded, moved or frozen."""


class MissingModelFile(ModelLoadError):
    """Custom backbone selected without a model file path."""


class RenderError(MattingError):
    """A render call failed.  The originating error is chained as __cause__."""
