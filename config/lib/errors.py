"""Configuration error base class."""

class FatalConfigError(Exception):
    """Raised at startup when the bridge cannot be configured to serve.

    Missing credentials, an unreadable keypair or an unconfigured mint all
    end here; the process must not start any poll loop after this.
    """
    pass
