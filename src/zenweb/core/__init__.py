"""
=============================================================================
NETWORKING CORE
=============================================================================

The only code in zenweb that touches sockets.

    SocketServer   accept loop + worker pool + keep-alive loop
    Connection     one client socket; frames requests out of the byte stream

Everything above this layer works on HTTPRequest / HTTPResponse objects
and can be exercised without a network (Engine.handle).

=============================================================================
"""

from .connection import Connection, ConnectionState
from .socket_server import SocketServer

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
]
