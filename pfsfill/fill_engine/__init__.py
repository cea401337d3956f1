"""
PFSFill Engine - Personal Financial Statement form filling.

Projects a nested financial data model onto the named fields of a
fixed-layout AcroForm document.

Key Principles:
1. Declarative - a versioned mapping table says where every value comes from
2. Blank instead of zero - absent and zero values leave the field empty
3. One outcome per field - no field's failure aborts the pass
4. Verified writes - every value written is read back
"""

from pfsfill.fill_engine.orchestrator import (
    FillOptions,
    run_fill_pass,
    run_fill_pass_async,
)
from pfsfill.fill_engine.mapping_table import MappingTable, load_mapping_table
from pfsfill.fill_engine.financial_model import FinancialDataModel
from pfsfill.fill_engine.models import (
    FillReport,
    FillResult,
    FillStatus,
    PassState,
)

__version__ = "1.0.0"
__all__ = [
    "run_fill_pass",
    "run_fill_pass_async",
    "FillOptions",
    "MappingTable",
    "load_mapping_table",
    "FinancialDataModel",
    "FillReport",
    "FillResult",
    "FillStatus",
    "PassState",
]
