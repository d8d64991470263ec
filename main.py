#!/usr/bin/env python3
"""
certsnek: obtain TLS certificates from an ACME CA via the HTTP-01 challenge.

This is the main entry point for the command line interface.
"""

from certsnek.cli import main

if __name__ == "__main__":
    main()
