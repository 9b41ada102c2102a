"""
reviewhub: cache-consistency and flash-sale admission core

The backend core for a shop review and voucher platform:
1. Read-through caching with pass-through, mutex and logical-expiry strategies
2. Distributed locking and monotonic id generation on Valkey
3. Flash-sale admission with asynchronous order persistence
"""

__version__ = "0.1.0"
