from __future__ import annotations


class StreamscanError(Exception):
    pass


class TransientFetchError(StreamscanError):
    """Provider overload, timeout, HTTP or JSON-RPC error for one unit of work."""


class NotFoundError(StreamscanError):
    """The provider answered, but the requested block/tx/name does not exist."""


class FatalEnumerationError(StreamscanError):
    """A top-level enumeration call failed; the whole refresh is aborted."""


class ConfigError(StreamscanError):
    pass
