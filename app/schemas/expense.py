from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class AssignmentMode(str, Enum):
    EVEN = "even"
    CUSTOM = "custom"


class PercentBase(str, Enum):
    PRE_TAX_ITEM_SUBTOTALS = "preTaxItemSubtotals"
    TAXABLE_ITEM_SUBTOTALS_ONLY = "taxableItemSubtotalsOnly"
    POST_DISCOUNT_ITEM_SUBTOTALS = "postDiscountItemSubtotals"
    POST_TAX_SUBTOTALS = "postTaxSubtotals"
    POST_FEES_SUBTOTALS = "postFeesSubtotals"


class AbsoluteSplitMode(str, Enum):
    PROPORTIONAL_TO_ITEMS_SUBTOTAL = "proportionalToItemsSubtotal"
    EVEN_ACROSS_ASSIGNED_PEOPLE = "evenAcrossAssignedPeople"


class RoundingMode(str, Enum):
    ROUND_HALF_UP = "roundHalfUp"
    ROUND_HALF_EVEN = "roundHalfEven"
    FLOOR = "floor"
    CEIL = "ceil"


class RemainderDistributionMode(str, Enum):
    LARGEST_SHARE = "largestShare"
    PAYER = "payer"
    FIRST_LISTED = "firstListed"
    RANDOM = "random"


class SplitType(str, Enum):
    EQUAL = "equal"
    WEIGHTED = "weighted"
    ITEMIZED = "itemized"


# -----------------------------------
# Item assignments
# -----------------------------------
class EvenAssignment(BaseModel):
    mode: Literal["even"] = "even"
    users: List[str] = []


class CustomAssignment(BaseModel):
    mode: Literal["custom"] = "custom"
    users: List[str] = []
    shares: Dict[str, Decimal] = {}


ItemAssignment = Annotated[
    Union[EvenAssignment, CustomAssignment],
    Field(discriminator="mode"),
]


class LineItem(BaseModel):
    id: str
    name: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal
    taxable: bool = True
    service_chargeable: bool = True
    assignment: ItemAssignment = Field(default_factory=EvenAssignment)

    @property
    def item_total(self) -> Decimal:
        return self.quantity * self.unit_price


# -----------------------------------
# Extras
# -----------------------------------
class PercentExtra(BaseModel):
    type: Literal["percent"] = "percent"
    value: Decimal
    base: Optional[PercentBase] = None


class AmountExtra(BaseModel):
    type: Literal["amount"] = "amount"
    value: Decimal
    split: Optional[AbsoluteSplitMode] = None


PercentOrAmount = Annotated[
    Union[PercentExtra, AmountExtra],
    Field(discriminator="type"),
]


class PercentAdjustment(PercentExtra):
    id: str
    name: str


class AmountAdjustment(AmountExtra):
    id: str
    name: str


FeeOrDiscount = Annotated[
    Union[PercentAdjustment, AmountAdjustment],
    Field(discriminator="type"),
]


class Extras(BaseModel):
    tax: Optional[PercentOrAmount] = None
    tip: Optional[PercentOrAmount] = None
    fees: List[FeeOrDiscount] = []
    discounts: List[FeeOrDiscount] = []


class RoundingConfig(BaseModel):
    precision: Decimal = Decimal("0.01")
    mode: RoundingMode = RoundingMode.ROUND_HALF_UP
    distribute_remainder_to: RemainderDistributionMode = RemainderDistributionMode.LARGEST_SHARE


class AllocationRule(BaseModel):
    percent_base: Optional[PercentBase] = PercentBase.PRE_TAX_ITEM_SUBTOTALS
    absolute_split: AbsoluteSplitMode = AbsoluteSplitMode.PROPORTIONAL_TO_ITEMS_SUBTOTAL
    rounding: RoundingConfig = Field(default_factory=RoundingConfig)


# -----------------------------------
# Allocation output
# -----------------------------------
class ItemContribution(BaseModel):
    item_id: str
    item_name: str
    quantity: Decimal
    unit_price: Decimal
    share_ratio: Decimal
    assigned_share: Decimal


class ParticipantBreakdown(BaseModel):
    user_id: str
    items_subtotal: Decimal
    extras_allocated: Dict[str, Decimal] = {}
    rounded_adjustment: Decimal = Decimal("0")
    remainder_adjustment: Decimal = Decimal("0")
    total: Decimal
    items: List[ItemContribution] = []

    @property
    def extras_total(self) -> Decimal:
        return sum(self.extras_allocated.values(), Decimal("0"))


class DegenerateInputWarning(BaseModel):
    """Structurally valid but odd input; the engine fell back to a zero contribution."""

    code: Literal[
        "unassigned_item",
        "zero_custom_shares",
        "zero_basis",
        "no_participants",
        "payer_not_participant",
        "amount_mismatch",
    ]
    message: str
    subject_id: Optional[str] = None


class AllocationResult(BaseModel):
    breakdowns: Dict[str, ParticipantBreakdown]
    grand_total: Decimal
    warnings: List[DegenerateInputWarning] = []


# -----------------------------------
# Expenses
# -----------------------------------
class Expense(BaseModel):
    id: str
    trip_id: str
    payer_user_id: str
    currency: str = "USD"
    amount: Decimal
    split_type: SplitType = SplitType.EQUAL
    participants: Dict[str, Decimal] = {}
    description: Optional[str] = None

    # itemized only
    items: Optional[List[LineItem]] = None
    extras: Optional[Extras] = None
    allocation: Optional[AllocationRule] = None
    participant_amounts: Optional[Dict[str, Decimal]] = None

    class Config:
        from_attributes = True


class BreakdownRequest(BaseModel):
    items: List[LineItem]
    extras: Extras = Field(default_factory=Extras)
    allocation: AllocationRule = Field(default_factory=AllocationRule)
    payer_id: Optional[str] = None
    participants: Optional[List[str]] = None
    seed: Optional[int] = None


class SharesRequest(BaseModel):
    expense: Expense
    decimal_places: Optional[int] = None
