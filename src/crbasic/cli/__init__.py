"""
CRBasic Parser Command-Line Interface
=====================================

This package provides the command-line tool for the CRBasic parser:

- **crbparse**: parse a CRBasic program and print its tree, tokens or
  diagnostics

The tool is a Click-based CLI application. The parser core never imports
this package.
"""

__all__ = ["crbparse"]
