"""
Relational persistence for credit accounts and reports.
"""
from .database import create_engine_from_config, init_schema
from .accounts import AccountStore
from .reports import ReportStore

__all__ = ['create_engine_from_config', 'init_schema', 'AccountStore', 'ReportStore']
