"""
Entry point for running speed tracking as a module.

Usage:
    python -m speed_tracking RECORDING
"""

from .cli import main

if __name__ == "__main__":
    main()
