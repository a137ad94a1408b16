"""
Household Hub - Source Package

The core of a shared household dashboard: who belongs to which family,
and how the family's lists stay in sync with the remote store.

DESIGN PRINCIPLES:
1. Membership is an explicit state, never a pair of booleans
2. The UI changes first, the store confirms, failures put things back
3. Fail visibly: every failed write produces a notification
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Hub Team"
