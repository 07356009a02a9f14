"""Secretable.

Credentials kept in a spreadsheet, encrypted under a key pair whose private
half is wrapped by a master password.
"""
from .version import __version__

__all__ = ["__version__"]
