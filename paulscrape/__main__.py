"""
Package entry point.

Allows running the application via:

    python -m paulscrape

This simply forwards execution to paulscrape.cli.main().
"""

from paulscrape.cli import main

if __name__ == "__main__":
    main()
