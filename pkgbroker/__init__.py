"""pkgbroker: Composer repository proxy and artifact mirror."""

__version__ = "0.3.0"
