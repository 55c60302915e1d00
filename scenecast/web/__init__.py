"""
Web Interface Components.

FastAPI backend: REST endpoints and the ``/ws`` live channel.
"""

from typing import List

__all__: List[str] = []
