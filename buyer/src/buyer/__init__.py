"""
Buyer side of the Runes marketplace: padding splits, offer revalidation and
order assembly.
"""

__version__ = "0.3.0"
