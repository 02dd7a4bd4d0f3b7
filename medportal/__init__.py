"""Medical-records portal backend: patients, hospitals and consent-gated record access."""

__version__ = "0.1.0"
