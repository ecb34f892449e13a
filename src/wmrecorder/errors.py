# src/wmrecorder/errors.py
"""Error taxonomy for the recorder.

Source errors are recoverable by reconnecting. Store open/schema errors are
fatal at startup. A write error ends the current connection epoch only.
"""


class RecorderError(Exception):
    """Base class for every error raised by wmrecorder."""


class ConfigError(RecorderError):
    pass


# Event source boundary


class SourceError(RecorderError):
    pass


class ConnectError(SourceError):
    pass


class SubscribeError(SourceError):
    pass


class TransportError(SourceError):
    pass


# Durable store boundary


class StoreError(RecorderError):
    pass


class StoreOpenError(StoreError):
    pass


class SchemaError(StoreError):
    pass


class WriteError(StoreError):
    pass
