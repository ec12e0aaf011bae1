"""Main entry point when executing callguard as a package.

This allows running the package using python -m callguard.
"""

from callguard.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
