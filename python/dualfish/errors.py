"""Exceptions shared by the stitching pipeline."""


class ConfigurationError(ValueError):
    """Malformed parameter record, lens count or run configuration.

    Raised before any image pass starts; the run cannot continue.
    """
