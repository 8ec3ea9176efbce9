"""
Addresses, transactions, PSBTs, signatures and coin selection.
"""
