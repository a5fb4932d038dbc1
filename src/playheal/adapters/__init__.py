"""Framework adapters for isolated test execution."""
