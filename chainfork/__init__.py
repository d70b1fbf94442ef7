# MIT License
# Copyright (c) 2025 Hashborn

"""
chainfork: fork a live Substrate chain's state into a new chain spec.
"""

__version__ = "0.1.0"
