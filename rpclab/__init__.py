"""ONC RPC toolkit: XDR, RPC client and server, port mapper client, an arithmetic service and file transfer."""

__version__ = "0.1.0"