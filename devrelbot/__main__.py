"""Main entry point when executing devrelbot as a package.

This allows running the package using python -m devrelbot.
"""

from devrelbot.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
