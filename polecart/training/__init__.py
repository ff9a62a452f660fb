# polecart/training/__init__.py
"""Training algorithms."""
