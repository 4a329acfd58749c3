"""Table and order lifecycle backend for restaurant staff."""

__version__ = "0.1.0"
