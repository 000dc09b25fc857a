"""
pgdowngrade - Offline PostgreSQL major version downgrade for managed clusters
"""

__version__ = "0.1.0"

from .core import DowngradeExecutor
from .errors import DowngradeError
from .trigger import DowngradeTrigger

__all__ = ["DowngradeExecutor", "DowngradeError", "DowngradeTrigger"]
