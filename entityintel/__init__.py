"""entityintel - derived intelligence layer over entities, contracts and grants."""

__version__ = "0.1.0"
