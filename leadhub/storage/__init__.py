"""Record storage for CRM entities.

This module provides:
- Domain models for users, products, leads and interactions
- RecordStore: in-memory tables with CRUD by id and predicate listing
"""

from leadhub.storage.models import (
    AnalyticsSummary,
    Interaction,
    InteractionCreate,
    InteractionType,
    InteractionUpdate,
    Lead,
    LeadCreate,
    LeadFilters,
    LeadPriority,
    LeadStatus,
    LeadUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    User,
    UserCreate,
    UserRole,
    UserUpdate,
)
from leadhub.storage.store import RecordStore, Table, get_record_store, set_record_store

__all__ = [
    # Models
    "AnalyticsSummary",
    "Interaction",
    "InteractionCreate",
    "InteractionType",
    "InteractionUpdate",
    "Lead",
    "LeadCreate",
    "LeadFilters",
    "LeadPriority",
    "LeadStatus",
    "LeadUpdate",
    "Product",
    "ProductCreate",
    "ProductUpdate",
    "User",
    "UserCreate",
    "UserRole",
    "UserUpdate",
    # Store
    "RecordStore",
    "Table",
    "get_record_store",
    "set_record_store",
]
