"""
runewallet - Transaction, PSBT and backend library for the Runes marketplace
"""

__version__ = "0.3.0"
