"""npm-offline-kit — build and install offline Node.js/pnpm tool kits."""

__version__ = "0.1.0"
