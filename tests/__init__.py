"""Test suite for galwind.

Unit tests for the neighbour search, kick resolution, decoupling and
configuration, plus end-to-end feedback events on synthetic boxes.
"""
