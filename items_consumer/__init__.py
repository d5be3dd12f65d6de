"""
Pub/Sub -> Firestore consumer for "item created" events.
"""

__version__ = "1.0.0"
