"""Enumerations shared across Shop Tracker modules.

Centralises domain constants so that the data access layer (DAL), the
business logic layer (BLL), the report engine and the CLI rely on a single
source of truth for roles, worksheet names and reporting limits.
"""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Mapping


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Upper bound on the number of spans a report may break a date range into.
MAX_REPORT_SPANS = 60

UNKNOWN_PRODUCT_NAME = "UNKNOWN PRODUCT"


class Role(str, Enum):
    """Enumerate the roles an actor can claim."""

    SHOPKEEPER = "SHOPKEEPER"
    STAFF = "STAFF"


class Capability(str, Enum):
    """Enumerate the guarded operations of the core."""

    RECORD_SALES = "RECORD_SALES"
    MANAGE_INVENTORY = "MANAGE_INVENTORY"
    RECORD_PURCHASES = "RECORD_PURCHASES"
    VIEW_REPORTS = "VIEW_REPORTS"
    MANAGE_USERS = "MANAGE_USERS"


ROLE_CAPABILITIES: Mapping[Role, FrozenSet[Capability]] = {
    Role.SHOPKEEPER: frozenset(Capability),
    Role.STAFF: frozenset({Capability.RECORD_SALES}),
}


class ReportScope(str, Enum):
    """Distinguish per-span report rows from whole-range aggregates."""

    PERIOD = "PERIOD"
    OVERALL = "OVERALL"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    SALES = "Sales"
    SALE_LINES = "SaleLines"
    PURCHASES = "Purchases"
    USERS = "Users"


class CollectionKey(str, Enum):
    """Enumerate the entity collections the DAL loads and saves as a whole."""

    PRODUCTS = "products"
    SALES = "sales"
    PURCHASES = "purchases"
    USERS = "users"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "MAX_REPORT_SPANS",
    "UNKNOWN_PRODUCT_NAME",
    "Role",
    "Capability",
    "ROLE_CAPABILITIES",
    "ReportScope",
    "SheetName",
    "CollectionKey",
]
