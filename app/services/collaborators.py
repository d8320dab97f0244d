# app/services/collaborators.py
"""
Narrow interfaces to the systems this service does not own.

The defaults talk to Supabase with the service-role client: the printer
agent polls the print_jobs table, and stock / numbering live in Postgres
functions. Tests swap these for in-memory fakes.
"""
import logging
import uuid
from typing import Protocol

from app.core.supabase_client import supabase_admin
from app.schemas.receipt import NonFiscalReceipt, Receipt

logger = logging.getLogger(__name__)


class Printer(Protocol):
    def print_receipt(self, receipt: Receipt) -> None: ...

    def print_non_fiscal(self, receipt: NonFiscalReceipt) -> None: ...


class StockDeduction(Protocol):
    def deduct(self, establishment_id: uuid.UUID, order_id: uuid.UUID) -> None: ...


class OrderNumberGenerator(Protocol):
    def next_number(self, establishment_id: uuid.UUID) -> str: ...


class PrintJobPrinter:
    """Queue receipts in print_jobs for the establishment's printer agent."""

    table = "print_jobs"

    def _insert(self, establishment_id: str, order_id: str, kind: str, payload: dict) -> None:
        supabase_admin().table(self.table).insert(
            {
                "establishment_id": establishment_id,
                "order_id": order_id,
                "kind": kind,
                "payload": payload,
                "status": "pending",
            }
        ).execute()
        logger.info("Queued %s print job for order %s", kind, order_id)

    def print_receipt(self, receipt: Receipt) -> None:
        self._insert(
            establishment_id=str(receipt.establishment_id),
            order_id=str(receipt.order_id),
            kind="receipt",
            payload=receipt.model_dump(mode="json"),
        )

    def print_non_fiscal(self, receipt: NonFiscalReceipt) -> None:
        self._insert(
            establishment_id=str(receipt.establishment_id),
            order_id=str(receipt.order_id),
            kind="non_fiscal",
            payload=receipt.model_dump(mode="json"),
        )


class SupabaseStockDeduction:
    """Stock is decremented by the apply_stock_deduction_for_order Postgres function."""

    def deduct(self, establishment_id: uuid.UUID, order_id: uuid.UUID) -> None:
        supabase_admin().rpc(
            "apply_stock_deduction_for_order",
            {"p_establishment_id": str(establishment_id), "p_order_id": str(order_id)},
        ).execute()


class SupabaseOrderNumberGenerator:
    def next_number(self, establishment_id: uuid.UUID) -> str:
        """
        Next sequential order number for the establishment.

        Raises:
            RuntimeError: if the RPC returns nothing usable.
        """
        response = supabase_admin().rpc(
            "get_next_order_number",
            {"p_establishment_id": str(establishment_id)},
        ).execute()
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = data.get("order_number") or data.get("get_next_order_number")
        if not data:
            raise RuntimeError("get_next_order_number returned no value")
        return str(data)
