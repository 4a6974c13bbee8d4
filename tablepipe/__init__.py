"""tablepipe - streaming table export pipeline."""

__version__ = "0.1.0"
__package_name__ = "tablepipe"

from tablepipe.logging import configure_logging

# Set up default logging configuration
configure_logging()
