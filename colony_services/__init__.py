"""
colony_services -- Package init and public API.

Responsibility:
    Wires configuration to the ledger kernel: logging, the database engine,
    schema creation, immutability listeners, and a ready LedgerEngine.

Architecture position:
    Services -- composition over config + kernel.

    Dependency direction:
        colony_services/ -> colony_config/  (allowed)
        colony_services/ -> colony_ledger/  (allowed)
        colony_ledger/   -> colony_services/ (FORBIDDEN)
        colony_ledger/   -> colony_config/   (FORBIDDEN)
"""

from colony_services.bootstrap import build_ledger_engine

__all__ = ["build_ledger_engine"]
