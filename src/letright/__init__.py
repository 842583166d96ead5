"""Let Right rental marketplace services.

The ``letright.erasure`` package implements the right-to-erasure workflow:
request, verification, cancellation and the scheduled cascade purge.
"""

__version__ = "0.1.0"
