"""Errors raised by the detection core."""


class DecodeError(ValueError):
    """Image bytes could not be decoded into a frame."""


class DetectorFault(RuntimeError):
    """The detector failed internally while processing a valid image."""
