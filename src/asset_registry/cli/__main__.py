"""CLI entry point for asset_registry.cli module.

Enables execution via: python -m asset_registry.cli
"""

from asset_registry.cli.recover_events import main

if __name__ == "__main__":
    raise SystemExit(main())
