"""
People Counter - Storage Module

Local SQLite store for locations, count logs and entry/exit events.
"""

from .database import Database

__all__ = ['Database']
