"""
Fixed layout of the Personal Financial Statement.

Schedule ids, their row capacity on the printed form, and where each schedule
lives in the camelCase data source.
"""

from typing import Dict, Tuple

# Schedule F is the selected-properties sequence
PROPERTY_SCHEDULE = "F"

SCHEDULE_CAPACITY: Dict[str, int] = {
    "A": 3,   # Accounts receivable
    "B": 3,   # Notes receivable
    "C": 3,   # Listed stocks and bonds
    "D": 3,   # Unlisted stocks and bonds
    "E": 3,   # Contracts and mortgages receivable
    "F": 8,   # Real estate
    "G": 3,   # Open accounts payable
    "H": 3,   # Notes payable to others
    "I": 8,   # Installment obligations
}

SCHEDULE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "A": ("name", "amount", "dueDate"),
    "B": ("name", "amount", "dueDate"),
    "C": ("registeredName", "shares", "marketPerShare", "totalValue"),
    "D": ("registeredName", "shares", "marketPerShare", "totalValue"),
    "E": (
        "description", "debtorName", "paymentSchedule", "pastDue",
        "originalBalance", "presentBalance", "interestRate",
    ),
    "F": (
        "address", "propertyType", "yearAcquired", "originalCost",
        "currentValue", "lender", "balance", "payment",
    ),
    "G": ("payableTo", "amount", "dueDate"),
    "H": ("payableTo", "amount", "dueDate"),
    "I": ("payableTo", "collateral", "balance", "finalDueDate", "monthlyPayment"),
}

PROPERTY_FIELDS = SCHEDULE_COLUMNS[PROPERTY_SCHEDULE]


def schedule_key(schedule_id: str) -> str:
    """Key of a schedule's rows in the data source."""
    if schedule_id == PROPERTY_SCHEDULE:
        return "selectedProperties"
    return f"schedule{schedule_id}"


def schedule_capacity(schedule_id: str) -> int:
    """Declared row capacity; 0 for unknown schedules."""
    return SCHEDULE_CAPACITY.get(schedule_id, 0)
