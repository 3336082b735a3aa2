"""Version information for workermailer."""

__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Release information
__title__ = "workermailer"
__description__ = "Outbound SMTP client with a MIME message builder"
__license__ = "MIT"


def get_version() -> str:
    """Return the current version string."""
    return __version__
