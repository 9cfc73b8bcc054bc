"""
Accident Analysis - INRS Cause Tree Workflow
============================================

A minimal service core for:
1. Declaring workplace accidents and classifying witness testimony
2. Building and validating INRS cause trees with preventive measures

No web layer, no auth, no PDF rendering.
"""

__version__ = "1.0.0"
