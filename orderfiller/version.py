"""Version information for the limit order filler.

Update this file when creating new releases.
"""

__version__ = "0.1.0"


def get_version():
    """Get the current version string."""
    return __version__
