"""
Holder Badge Engine

A scheduled service that decides which wallet holders qualify for tiered badges:
- Holder fetching from rate-limited upstream providers with retry and key rotation
- Cross-wallet balance combining per social identity
- Basic/Upgraded eligibility classification
- Scheduled delivery of results to the badges API
"""

__version__ = "0.1.0"
__author__ = "Badge Engine Team"
