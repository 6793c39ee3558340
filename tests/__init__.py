"""
Test package for Chess UCI Driver.

This package contains unit tests for the line framer, engine session, chess
clock, game orchestrator and their collaborators. Subprocess tests run
against the scripted engine in fake_engine.py.
"""
