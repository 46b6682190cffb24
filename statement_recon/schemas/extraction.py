"""
Extraction contracts.
Engines receive a DocumentHandle and the fixed STATEMENT_FIELD_SCHEMA and
the pipeline reports a tagged ExtractionResult: callers branch on `tag`,
never on whether a payload happens to be None.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from statement_recon.schemas.statements import StatementExtraction


class DocumentHandle(BaseModel):
    """A source document as seen by engines and unlockers."""
    path: str
    file_name: str
    size_bytes: int = 0


class FieldSpec(BaseModel):
    name: str
    type: str
    description: str
    required: bool = False


# Target fields for the bank-statement domain.
STATEMENT_FIELD_SCHEMA: list[FieldSpec] = [
    FieldSpec(name="bank_name", type="string", required=True,
              description="Official bank name as printed or shown in the logo"),
    FieldSpec(name="account_number", type="string", required=True,
              description="Complete account number including formatting characters"),
    FieldSpec(name="currency", type="string", required=True,
              description="Currency code used on the statement, e.g. KES, USD, EUR"),
    FieldSpec(name="company_name", type="string",
              description="Full official name of the account holder"),
    FieldSpec(name="statement_period", type="string", required=True,
              description="Statement date range as DD/MM/YYYY - DD/MM/YYYY"),
    FieldSpec(name="opening_balance", type="number",
              description="Balance at the start of the statement period"),
    FieldSpec(name="closing_balance", type="number",
              description="Balance at the end of the statement period"),
    FieldSpec(name="monthly_balances", type="array",
              description="One entry per calendar month: month, year, opening_balance, "
                          "closing_balance, statement_page, opening_date, closing_date"),
]


class ExtractionSuccess(BaseModel):
    tag: Literal["success"] = "success"
    payload: StatementExtraction
    attempts: int = 1
    engine_name: Optional[str] = None


class ExtractionFailure(BaseModel):
    tag: Literal["failure"] = "failure"
    reason: str
    retryable: bool
    error_code: str = "ERR_EXTRACTION"
    attempts: int = 0


ExtractionResult = Annotated[
    Union[ExtractionSuccess, ExtractionFailure],
    Field(discriminator="tag"),
]
