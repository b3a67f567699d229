import asyncio
import sys

__version__ = "1.0.0"


def main():
    """Main entry point for the package."""
    from . import server
    sys.exit(asyncio.run(server.main()))


__all__ = ['main', '__version__']
