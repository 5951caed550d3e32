"""Crash-simulation vault rebalancer."""
