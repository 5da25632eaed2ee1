"""
SQL Advisor - AI query optimization recommendations for SQL Server
"""

from sqladvisor.core.constants import APP_VERSION

__version__ = APP_VERSION
