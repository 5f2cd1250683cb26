"""Errors raised by the X-Ray agent outside the detection core."""


class MalformedSensorPayload(ValueError):
    """A sensor text message could not be parsed into a sensor record."""


class TransportReadError(ConnectionError):
    """The client connection is gone; the dispatcher loop must stop."""
