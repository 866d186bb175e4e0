"""
Periodic background work: appeal abandonment sweep and rate counter GC.
"""
