"""Core mathematics, contracts and configuration for the edge ledger.

This package contains pure, sport-agnostic building blocks:

- ``odds_math``     decimal/American conversion, de-vig, line movement
- ``contracts``     frozen DTOs and closed enums shared by every component
- ``errors``        error taxonomy and reason codes
- ``sport_config``  per-sport constants and blender caps

Nothing in this package imports from ``edgeledger.services`` or
``edgeledger.models``.  All modules are side-effect-free and unit-testable
in isolation.
"""
