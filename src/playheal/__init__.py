"""playheal: automated healing for failing Playwright end-to-end tests."""

__version__ = "0.1.0"
