"""misv: a static file server that mirrors an origin site on demand."""

__version__ = "0.1.0"
