"""codegrant - OAuth2 authorization code grant server for web-server clients."""

__version__ = "0.1.0"
