"""Entry point for running mailgate as a module.

Usage:
    python -m mailgate validate-config
    python -m mailgate --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from mailgate.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
