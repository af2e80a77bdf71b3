"""
jobs — Periodic background work (crowd simulation, emergency detection).
"""
