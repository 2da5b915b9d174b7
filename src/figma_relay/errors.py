"""Relay exception hierarchy.

Raised by the correlator and supervisor, translated into JSON-RPC
error responses by the gateway handler.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay failures."""


class TransportUnavailableError(RelayError, ConnectionError):
    """The gateway's link to the hub is not open."""


class ChannelNotJoinedError(RelayError):
    """No channel has been joined yet."""


class PeerError(RelayError):
    """Error string reported by the plugin or synthesized by the hub."""


class CommandTimeoutError(RelayError, TimeoutError):
    """No response arrived before the request's timeout elapsed.

    The command may or may not have executed on the plugin side.
    """


class EnvelopeError(RelayError, ValueError):
    """A hub frame could not be parsed into a known envelope."""
