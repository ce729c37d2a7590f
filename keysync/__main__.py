"""Main entry point when executing keysync as a package.

This allows running the package using python -m keysync.
"""

from keysync.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
