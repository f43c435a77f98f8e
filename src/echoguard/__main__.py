"""
Main entry point for running the echoguard server as a module.

This allows the package to be executed with:
    python -m echoguard

The recommended way to run the server is using the installed CLI command:
    echoguard-server
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
