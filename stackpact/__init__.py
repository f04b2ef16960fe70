"""
Stackpact - deployment contract engine for multi-runtime stacks.

Resolves a stack identity, renders runtime artifacts from it, validates them
against the deployment policy and gates production apply behind an explicit
authorization toggle.
"""

__version__ = "0.1.0"
__author__ = "Stackpact"
