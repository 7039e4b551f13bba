"""
hubvault - Backup and restore for dashboard hub state

Exports a dashboard hub's settings, service connections, widget layout and
saved widget profiles to one portable JSON document, and restores them.

Key Features:
    - Per-category selection of what goes into a backup
    - Credentials split from layout so they can be left out or encrypted
    - AES-256-GCM encryption of credential categories with a password
    - All-or-nothing validation before any store is written
    - Cached widget data dropped when the state it was built from changes
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from hubvault.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
