"""
OIDC authorization-code login service.
"""

__version__ = "1.0.0"
