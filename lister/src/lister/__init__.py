"""
Seller side of the Runes marketplace: offer building, validation and unlisting.
"""

__version__ = "0.3.0"
