"""Device tree data model, property values, and structural and bus checks."""

__version__ = "0.1.0"
__all__ = ["data", "tree", "checkbase", "checks_structural", "checks_bus"]