"""Allow running the agent with ``python -m printbridge``."""

from printbridge.cli import main

if __name__ == "__main__":
    main()
