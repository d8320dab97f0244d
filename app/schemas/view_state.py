# app/schemas/view_state.py
import uuid
from datetime import date

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel


class AllTabFilters(SQLModel):
    """
    Narrowing applied to the "All" (fully confirmed) tab.

    - day: exact local calendar day; when None the tab shows today only
    - payment_method: exact match on the stored method code
    - delivery_only: keep only order_type == "delivery"
    - show_pdv / show_site: source toggles. Neither selected yields an
      empty list, both selected disables source filtering.
    """

    model_config = ConfigDict(extra="forbid")

    day: date | None = None
    payment_method: str | None = None
    delivery_only: bool = False
    show_pdv: bool = True
    show_site: bool = True

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalize_method(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower()
        return v or None


class OrdersViewState(SQLModel):
    """
    Operator-side view state for the orders screen.

    Passed explicitly to the listing code instead of living in
    module-level globals; the client echoes it back on each request.
    """

    model_config = ConfigDict(extra="forbid")

    active_tab: str = "pending"
    search_text: str | None = None
    selected_order_id: uuid.UUID | None = None
    filters: AllTabFilters = AllTabFilters()

    @field_validator("search_text", mode="before")
    @classmethod
    def normalize_search(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None
