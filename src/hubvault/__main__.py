"""
Entry point for running hubvault as a module.

Usage:
    python -m hubvault [command] [options]
"""

from hubvault.cli import main

if __name__ == "__main__":
    main()
