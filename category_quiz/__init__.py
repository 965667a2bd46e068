"""
Category quiz: timed multiple-choice sessions backed by a shared remote store.
"""
