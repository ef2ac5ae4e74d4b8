"""
Exceptions raised by the auth core.

Policy outcomes (rate limits, wrong codes, dead sessions) are returned as
result objects and never raised. Only misconfiguration lives here; store
errors propagate as SQLAlchemy exceptions.
"""


class AuthConfigurationError(RuntimeError):
    """The auth core cannot run safely with the supplied configuration."""
