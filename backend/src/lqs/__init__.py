"""
LQS - Lead-Quote-Sale matching engine

Reconciles agency-scoped lead, quote and sale feeds into one canonical
household per prospect, escalating ambiguous sales to human review.
"""

__version__ = "0.1.0"
