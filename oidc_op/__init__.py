"""OpenID Connect / OAuth 2.0 authorization server core"""

__version__ = "0.1.0"
