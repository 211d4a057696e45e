"""
Entry point for running sshm as a module.

Usage:
    python -m sshm connect web-1
"""

from .cli import main

if __name__ == "__main__":
    main()
