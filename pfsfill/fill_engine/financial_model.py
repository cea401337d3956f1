"""
Financial data model for a Personal Financial Statement.

Typed pydantic input model. JSON uses camelCase keys, Python attributes are
snake_case. The engine itself reads the camelCase dump (``to_source``), so a
plain mapping of the same shape is accepted everywhere a model is.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from pfsfill.exceptions import ValidationError
from pfsfill.fill_engine import calculations

logger = structlog.get_logger(__name__)

Money = Optional[Decimal]
DateLike = Optional[Union[date, str]]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# Schedule Rows
# =============================================================================

class ReceivableRow(_CamelModel):
    """Schedules A and B."""
    name: Optional[str] = None
    amount: Money = None
    due_date: DateLike = None


class SecurityRow(_CamelModel):
    """Schedules C and D."""
    registered_name: Optional[str] = None
    shares: Optional[Decimal] = None
    market_per_share: Money = None
    total_value: Money = None


class ContractRow(_CamelModel):
    """Schedule E."""
    description: Optional[str] = None
    debtor_name: Optional[str] = None
    payment_schedule: Optional[str] = None
    past_due: Money = None
    original_balance: Money = None
    present_balance: Money = None
    interest_rate: Optional[Decimal] = None


class PayableRow(_CamelModel):
    """Schedules G and H."""
    payable_to: Optional[str] = None
    amount: Money = None
    due_date: DateLike = None


class InstallmentRow(_CamelModel):
    """Schedule I."""
    payable_to: Optional[str] = None
    collateral: Optional[str] = None
    balance: Money = None
    final_due_date: DateLike = None
    monthly_payment: Money = None


class Property(_CamelModel):
    """A selected real estate holding (schedule F)."""
    id: Optional[Union[str, int]] = None
    address: Optional[str] = None
    property_type: Optional[str] = None
    year_acquired: Optional[Union[str, int]] = None
    original_cost: Money = None
    current_value: Money = None
    ownership_percentage: Optional[Decimal] = Decimal(100)
    lender: Optional[str] = None
    balance: Money = None
    payment: Money = None


class Mortgage(_CamelModel):
    """Mortgage joined to a property by ``property_id``."""
    property_id: Optional[Union[str, int]] = None
    lender: Optional[str] = None
    principal_balance: Money = None
    payment_amount: Money = None


class Summaries(_CamelModel):
    total_assets: Money = None
    total_liabilities: Money = None
    net_worth: Money = None


# =============================================================================
# Top-level Model
# =============================================================================

class FinancialDataModel(_CamelModel):
    """
    Whole data set for one fill pass.

    Schedules are not truncated to the printed capacity; rows beyond it are
    reported as overflow by the diagnostics.
    """
    model_config = ConfigDict(extra="allow")

    borrower_name: Optional[str] = None

    # Assets
    cash_on_hand: Money = None
    cash_other_institutions: Money = None
    building_material_inventory: Money = None
    life_insurance_cash_value: Money = None
    retirement_accounts: Money = None
    automobiles_trucks: Money = None
    machinery_tools: Money = None
    other_assets: Optional[str] = None
    other_assets_value: Money = None

    # Liabilities
    notes_payable_relatives: Money = None
    accrued_interest: Money = None
    accrued_salary_wages: Money = None
    accrued_taxes_other: Money = None
    income_tax_payable: Money = None
    chattel_mortgage: Money = None
    other_liabilities: Optional[str] = None
    other_liabilities_value: Money = None

    # Contingent liabilities and insurance
    guaranteed_loans: Money = None
    surety_bonds: Money = None
    contingent_other: Optional[str] = None
    contingent_other_value: Money = None
    insurance_description: Optional[str] = None
    insurance_amount: Money = None
    life_insurance_face_value: Money = None
    life_insurance_borrowed: Money = None

    # Income
    salary_wages: Money = None
    proprietorship_draws: Money = None
    commissions_bonus: Money = None
    dividends_interest: Money = None
    rentals: Money = None
    other_income: Money = None

    # Schedules
    schedule_a: List[ReceivableRow] = Field(default_factory=list)
    schedule_b: List[ReceivableRow] = Field(default_factory=list)
    schedule_c: List[SecurityRow] = Field(default_factory=list)
    schedule_d: List[SecurityRow] = Field(default_factory=list)
    schedule_e: List[ContractRow] = Field(default_factory=list)
    schedule_g: List[PayableRow] = Field(default_factory=list)
    schedule_h: List[PayableRow] = Field(default_factory=list)
    schedule_i: List[InstallmentRow] = Field(default_factory=list)
    selected_properties: List[Property] = Field(default_factory=list)
    mortgages: List[Mortgage] = Field(default_factory=list)

    summaries: Summaries = Field(default_factory=Summaries)

    def to_source(self) -> Dict[str, Any]:
        """camelCase dictionary the resolver reads."""
        return self.model_dump(by_alias=True)

    def with_summaries(self) -> "FinancialDataModel":
        """
        Copy with missing summary figures computed from the data.

        Caller-supplied summaries are kept as they are.
        """
        source = self.to_source()
        current = self.summaries
        filled = Summaries(
            total_assets=(
                current.total_assets
                if current.total_assets is not None
                else calculations.total_assets(source)
            ),
            total_liabilities=(
                current.total_liabilities
                if current.total_liabilities is not None
                else calculations.total_liabilities(source)
            ),
            net_worth=(
                current.net_worth
                if current.net_worth is not None
                else calculations.net_worth(source)
            ),
        )
        return self.model_copy(update={"summaries": filled})


def from_payload(payload: Mapping[str, Any]) -> FinancialDataModel:
    """
    Parse a camelCase payload into a FinancialDataModel.

    Raises:
        ValidationError: Payload does not match the model.
    """
    try:
        return FinancialDataModel.model_validate(dict(payload))
    except PydanticValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        logger.warning("Financial data rejected", error_count=len(errors))
        raise ValidationError("Invalid financial data", errors=errors)


def as_source(data: Union[FinancialDataModel, Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Normalize a model or a plain mapping to the camelCase source dictionary.

    Raises:
        ValidationError: ``data`` is neither a model nor a mapping.
    """
    if isinstance(data, FinancialDataModel):
        return data.to_source()
    if isinstance(data, Mapping):
        return dict(data)
    raise ValidationError(
        "Financial data must be a FinancialDataModel or a mapping",
        errors=[{"loc": "", "msg": f"got {type(data).__name__}"}],
    )
