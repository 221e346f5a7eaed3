"""Request and response bodies of the sales-tax endpoint."""

from pydantic import BaseModel, ConfigDict, Field


class SalesTaxRequest(BaseModel):
    """Amount to compute sales tax for.

    Strict mode rejects strings and booleans for ``amount``, and ``NaN``,
    ``Infinity`` or out-of-range literals such as ``1e400`` are rejected
    instead of becoming non-finite floats. Unknown fields are ignored.
    """

    model_config = ConfigDict(strict=True, allow_inf_nan=False)

    amount: float = Field(
        default=0.0,
        description="Pre-tax amount",
        examples=[100.0],
    )


class SalesTaxResponse(BaseModel):
    """Computed sales tax.

    Only finite amounts have a JSON number representation, so an overflowing
    computation fails validation here rather than serializing as ``null``.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    amount: float = Field(..., description="Pre-tax amount", examples=[100.0])
    tax_rate: float = Field(..., description="Tax rate in percent", examples=[7.5])
    tax_amount: float = Field(..., description="Tax due", examples=[7.5])
    total_amount: float = Field(
        ..., description="Amount including tax", examples=[107.5]
    )
