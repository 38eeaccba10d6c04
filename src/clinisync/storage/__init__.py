"""On-disk storage: filesystem primitives, locks, record store, change ledger."""
