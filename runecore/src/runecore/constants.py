"""
Bitcoin and marketplace protocol constants.
"""

from __future__ import annotations

# Standard P2PKH dust limit in Bitcoin Core
DUST_LIMIT = 546  # satoshis

# Sighash flags
SIGHASH_DEFAULT = 0x00  # taproot only
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80

# Offer fragments commit to their own input/output pair only.
# Changing this invalidates every outstanding offer.
OFFER_SIGHASH = SIGHASH_SINGLE | SIGHASH_ANYONECANPAY  # 0x83

# Transactions built by the marketplace always use these
TX_VERSION = 2
TX_LOCKTIME = 0
DEFAULT_SEQUENCE = 0xFFFFFFFF

# Padding outputs created by the splitter
PADDING_UNIT_VALUE = 600  # satoshis
MIN_SPLIT_OUTPUTS = 2
MAX_SPLIT_OUTPUTS = 11
# UTXOs at or below this value are reused as padding without splitting
SMALL_UTXO_THRESHOLD = 1000  # satoshis

# Value of the dust output carrying transferred runes / inscriptions
ITEM_OUTPUT_VALUE = DUST_LIMIT

# Revalidation fan-out against the indexer
REVALIDATION_BATCH_SIZE = 5
REVALIDATION_BATCH_DELAY = 0.5  # seconds

# Data carrier limits
MAX_SCRIPT_ELEMENT_SIZE = 520
