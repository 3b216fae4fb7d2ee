"""Valuation, rebalancing and analytics over a decrypted vault snapshot.

Every function here is pure: inputs are read-only snapshots and results are
new frozen objects. Import from the submodules directly; the vault models in
``coinvault.models`` depend on ``numbers`` so this package stays import-free.
"""
