"""
Mantrailing Card

Prepaid card and training progression service for a dog-training school:
customer cards with a Decimal balance, an append-only booking log, the
five-stage Mantrailing curriculum and a hash-chained audit trail.
"""

__version__ = "1.0.0"
