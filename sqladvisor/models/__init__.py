"""
Data models
"""

from sqladvisor.models.query_info import QueryInfo

__all__ = ['QueryInfo']
