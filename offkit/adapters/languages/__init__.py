"""Language package managers — pnpm."""

from offkit.adapters.languages.pnpm import PnpmAdapter

__all__ = ["PnpmAdapter"]
