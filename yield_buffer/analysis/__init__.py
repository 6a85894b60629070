"""Metrics, charts and results storage for simulation runs"""
