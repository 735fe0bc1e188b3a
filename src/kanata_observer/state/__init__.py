"""Layer state tracking.

The transition filter in this package is the only owner of the
last-dispatched layer; nothing else reads or writes it.
"""
