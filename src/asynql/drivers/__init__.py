"""Connection adapters. Importing this package registers the sqlite and mysql drivers."""

from . import mysql, sqlite
from .base import Connection, ConnectionFactory
from .registry import available, get, register

__all__ = ["Connection", "ConnectionFactory", "available", "get", "register", "mysql", "sqlite"]
