"""Test package for the proctored assessment runner.

Engine tests drive the session headlessly with a fake clock and synthetic
environment signals. UI smoke tests use pygame's dummy video driver so no
real window opens. Run ``pytest`` from the project root.
"""
