"""
Main entry point for mysql_mcp_stdio module
Allows running via: python -m mysql_mcp_stdio
"""

from . import main

if __name__ == "__main__":
    main()
