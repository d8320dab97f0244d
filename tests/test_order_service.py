"""
Tests for the order lifecycle (accept, status moves, reject, edit, credit).
"""
import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from app.core.timeutils import local_date, utcnow
from app.models.order import Order
from app.models.side_effect import SideEffectTask
from app.schemas.order import OrderEdit
from app.schemas.view_state import OrdersViewState
from app.services.tabs import Tab

TZ = "America/Sao_Paulo"


def reload(session, order) -> Order:
    session.expire_all()
    return session.get(Order, order.id)


def tasks_for(session, order) -> list[SideEffectTask]:
    return session.exec(select(SideEffectTask).where(SideEffectTask.order_id == order.id)).all()


class TestAcceptAndPrint:
    def test_single_active_courier_is_auto_assigned(
        self, session, establishment, service, partner_delivery, make_courier, printer, stock, numbers
    ):
        courier = make_courier("Zé Motoboy")
        make_courier("Inativo", is_active=False)

        result = service.accept_and_print(session, establishment.id, partner_delivery.id)

        assert result.warnings == []
        assert result.printed
        assert result.assigned_courier.id == courier.id
        order = reload(session, partner_delivery)
        assert order.delivery_boy_id == courier.id
        assert order.accepted_and_printed_at is not None
        # partner-site orders take the till numbering
        assert order.order_number == "0101"
        assert stock.calls == [(establishment.id, order.id)]
        assert len(printer.receipts) == 1
        assert [l.name for l in printer.receipts[0].lines] == ["Cheeseburger", "Coca-Cola Lata"]
        assert {t.status for t in tasks_for(session, order)} == {"done"}

    def test_several_couriers_require_a_choice(
        self, session, establishment, service, partner_delivery, make_courier, printer
    ):
        make_courier("Ana")
        make_courier("Bruno")

        with pytest.raises(HTTPException) as exc:
            service.accept_and_print(session, establishment.id, partner_delivery.id)

        assert exc.value.status_code == 409
        assert exc.value.detail["code"] == "courier_selection_required"
        assert sorted(c["name"] for c in exc.value.detail["couriers"]) == ["Ana", "Bruno"]
        assert reload(session, partner_delivery).accepted_and_printed_at is None
        assert printer.receipts == []

    def test_explicit_courier(self, session, establishment, service, partner_delivery, make_courier):
        make_courier("Ana")
        bruno = make_courier("Bruno")
        result = service.accept_and_print(session, establishment.id, partner_delivery.id, courier_id=bruno.id)
        assert reload(session, partner_delivery).delivery_boy_id == bruno.id
        assert result.assigned_courier.name == "Bruno"

    def test_inactive_explicit_courier_refused(self, session, establishment, service, partner_delivery, make_courier):
        ghost = make_courier("Ghost", is_active=False)
        with pytest.raises(HTTPException) as exc:
            service.accept_and_print(session, establishment.id, partner_delivery.id, courier_id=ghost.id)
        assert exc.value.status_code == 422

    def test_no_courier_leaves_unassigned(self, session, establishment, service, partner_delivery):
        result = service.accept_and_print(session, establishment.id, partner_delivery.id)
        assert result.warnings == []
        assert result.assigned_courier is None
        assert reload(session, partner_delivery).delivery_boy_id is None

    def test_courier_directory_failure_is_a_warning(
        self, session, establishment, service, partner_delivery, courier_repo, monkeypatch
    ):
        def broken(*args, **kwargs):
            raise OperationalError("select", {}, Exception("connection reset"))

        monkeypatch.setattr(courier_repo, "list_active", broken)
        result = service.accept_and_print(session, establishment.id, partner_delivery.id)
        assert any("Courier directory" in w for w in result.warnings)
        order = reload(session, partner_delivery)
        assert order.accepted_and_printed_at is not None
        assert order.delivery_boy_id is None

    def test_side_effect_failures_do_not_undo_acceptance(
        self, session, establishment, service, runner, partner_delivery, printer, stock, numbers
    ):
        printer.fail = True
        stock.fail = True
        numbers.fail = True

        result = service.accept_and_print(session, establishment.id, partner_delivery.id)

        assert not result.printed
        assert len(result.warnings) == 3
        assert any(w.startswith("Receipt printing failed") for w in result.warnings)
        assert any(w.startswith("Stock deduction failed") for w in result.warnings)
        order = reload(session, partner_delivery)
        assert order.accepted_and_printed_at is not None
        assert order.order_number == "SITE-1"

        failed = tasks_for(session, order)
        assert {(t.kind, t.status) for t in failed} == {
            ("print_receipt", "failed"),
            ("stock_deduction", "failed"),
        }
        assert all(t.last_error for t in failed)

        printer.fail = False
        stock.fail = False
        retried = runner.retry_failed(session, establishment.id)
        assert {t.status for t in retried} == {"done"}
        assert all(t.attempts == 2 for t in retried)
        assert len(printer.receipts) == 1

    def test_renumber_save_failure_keeps_side_effects_running(
        self, session, establishment, service, partner_delivery, printer, stock, monkeypatch
    ):
        save = service.order_repo.update_order

        def failing_renumber(session, order):
            if order.order_number != "SITE-1":
                raise OperationalError("update", {}, Exception("connection reset"))
            return save(session, order)

        monkeypatch.setattr(service.order_repo, "update_order", failing_renumber)
        result = service.accept_and_print(session, establishment.id, partner_delivery.id)

        assert result.warnings == ["Order number reissue failed: could not be saved"]
        assert result.printed
        assert len(printer.receipts) == 1
        assert len(stock.calls) == 1
        order = reload(session, partner_delivery)
        assert order.order_number == "SITE-1"
        assert order.accepted_and_printed_at is not None

    def test_kiosk_accepted_without_renumbering(self, session, establishment, service, make_order):
        order = make_order(channel="totem", order_number="K-9")
        service.accept_and_print(session, establishment.id, order.id)
        assert reload(session, order).order_number == "K-9"

    def test_point_of_sale_cannot_be_accepted(self, session, establishment, service, make_order):
        order = make_order(origin="pdv")
        with pytest.raises(HTTPException) as exc:
            service.accept_and_print(session, establishment.id, order.id)
        assert exc.value.status_code == 409

    def test_accept_twice(self, session, establishment, service, partner_delivery):
        service.accept_and_print(session, establishment.id, partner_delivery.id)
        with pytest.raises(HTTPException) as exc:
            service.accept_and_print(session, establishment.id, partner_delivery.id)
        assert exc.value.status_code == 409

    def test_other_establishment_is_not_found(self, session, service, partner_delivery):
        with pytest.raises(HTTPException) as exc:
            service.accept_and_print(session, uuid.uuid4(), partner_delivery.id)
        assert exc.value.status_code == 404


class TestReject:
    def test_blank_reason(self, session, establishment, service, partner_delivery):
        with pytest.raises(HTTPException) as exc:
            service.reject(session, establishment.id, partner_delivery.id, "   ")
        assert exc.value.status_code == 422

    def test_reject_pending(self, session, establishment, service, partner_delivery, partitioner):
        result = service.reject(session, establishment.id, partner_delivery.id, " Fora da área de entrega ")
        assert result.order.status == "cancelled"
        assert result.order.rejection_reason == "Fora da área de entrega"
        assert partitioner.primary_tab(reload(session, partner_delivery)) == Tab.REJECTED

    def test_refused_after_acceptance(self, session, establishment, service, partner_delivery):
        service.accept_and_print(session, establishment.id, partner_delivery.id)
        with pytest.raises(HTTPException) as exc:
            service.reject(session, establishment.id, partner_delivery.id, "Cliente desistiu")
        assert exc.value.status_code == 409
        assert reload(session, partner_delivery).rejection_reason is None


class TestStatusMoves:
    def test_online_order_needs_acceptance(self, session, establishment, service, partner_delivery):
        with pytest.raises(HTTPException) as exc:
            service.mark_preparing(session, establishment.id, partner_delivery.id)
        assert exc.value.status_code == 409

    def test_forward_only(self, session, establishment, service, partner_delivery):
        service.accept_and_print(session, establishment.id, partner_delivery.id)
        assert service.mark_preparing(session, establishment.id, partner_delivery.id).order.status == "preparing"
        assert service.mark_ready(session, establishment.id, partner_delivery.id).order.status == "ready"
        # same state again is a no-op
        assert service.mark_ready(session, establishment.id, partner_delivery.id).order.status == "ready"
        with pytest.raises(HTTPException) as exc:
            service.mark_preparing(session, establishment.id, partner_delivery.id)
        assert exc.value.status_code == 409
        assert service.mark_completed(session, establishment.id, partner_delivery.id).order.status == "completed"

    def test_counter_order_can_skip_steps(self, session, establishment, service, make_order):
        order = make_order(origin="pdv")
        assert service.mark_completed(session, establishment.id, order.id).order.status == "completed"

    def test_confirm_payment_idempotent(self, session, establishment, service, make_order):
        order = make_order(origin="pdv", status="completed")
        assert service.confirm_payment(session, establishment.id, order.id).order.payment_status == "paid"
        assert service.confirm_payment(session, establishment.id, order.id).order.payment_status == "paid"

    def test_confirm_payment_of_rejected_order(self, session, establishment, service, make_order):
        order = make_order(origin="pdv", status="cancelled", rejection_reason="x")
        with pytest.raises(HTTPException) as exc:
            service.confirm_payment(session, establishment.id, order.id)
        assert exc.value.status_code == 409

    def test_confirm_payment_settles_credit_sale(self, session, establishment, service, make_order):
        today = local_date(utcnow(), TZ)
        order = make_order(
            origin="pdv",
            status="completed",
            payment_method="fiado",
            is_credit_sale=True,
            total_amount=100.0,
            credit_due_date=today + timedelta(days=5),
            credit_interest_rate_per_day=0.01,
        )
        result = service.confirm_payment(session, establishment.id, order.id)
        assert result.order.payment_status == "paid"
        assert result.order.credit_received_at is not None
        assert result.order.credit_interest_amount == 0.0
        assert service.list_receivables(session, establishment.id, today=today).not_yet_due == []

    def test_confirm_payment_freezes_overdue_interest(self, session, establishment, service, make_order):
        today = local_date(utcnow(), TZ)
        order = make_order(
            origin="pdv",
            status="completed",
            payment_method="fiado",
            is_credit_sale=True,
            total_amount=100.0,
            credit_due_date=today - timedelta(days=3),
            credit_interest_rate_per_day=0.01,
        )
        service.confirm_payment(session, establishment.id, order.id)
        assert reload(session, order).credit_interest_amount == 3.0


class TestEdit:
    def test_payment_method_change_reprints(self, session, establishment, service, make_order, printer):
        order = make_order(origin="pdv", payment_method="dinheiro", notes="[1x X-Tudo - R$ 20,00]")
        result = service.edit(session, establishment.id, order.id, OrderEdit(payment_method="pix"))
        assert result.printed
        assert result.order.payment_method == "pix"
        assert printer.receipts[0].payment_method_label == "PIX"

    def test_same_method_does_not_reprint(self, session, establishment, service, make_order, printer):
        order = make_order(origin="pdv", payment_method="pix")
        service.edit(session, establishment.id, order.id, OrderEdit(payment_method="pix", customer_name="Ana"))
        assert printer.receipts == []
        assert reload(session, order).customer_name == "Ana"

    def test_reprint_failure_keeps_edit(self, session, establishment, service, make_order, printer):
        printer.fail = True
        order = make_order(origin="pdv", payment_method="dinheiro")
        result = service.edit(session, establishment.id, order.id, OrderEdit(payment_method="cartao_debito"))
        assert not result.printed
        assert result.warnings
        assert reload(session, order).payment_method == "cartao_debito"

    def test_only_provided_fields_are_written(self, session, establishment, service, make_order):
        order = make_order(origin="pdv", table_number="7", notes="mesa perto da janela")
        service.edit(session, establishment.id, order.id, OrderEdit(table_number="8"))
        stored = reload(session, order)
        assert stored.table_number == "8"
        assert stored.notes == "mesa perto da janela"

    def test_cannot_cancel_through_edit(self, session, establishment, service, make_order):
        order = make_order(origin="pdv")
        with pytest.raises(HTTPException) as exc:
            service.edit(session, establishment.id, order.id, OrderEdit(status="cancelled"))
        assert exc.value.status_code == 409

    def test_rejected_order_cannot_be_reopened(self, session, establishment, service, partner_delivery, partitioner):
        service.reject(session, establishment.id, partner_delivery.id, "Fora da area")
        with pytest.raises(HTTPException) as exc:
            service.edit(session, establishment.id, partner_delivery.id, OrderEdit(status="pending"))
        assert exc.value.status_code == 409

        stored = reload(session, partner_delivery)
        assert (stored.status, stored.rejection_reason, stored.payment_status) == (
            "cancelled",
            "Fora da area",
            "cancelled",
        )
        assert partitioner.primary_tab(stored) == Tab.REJECTED

    def test_rejected_order_accepts_other_fields(self, session, establishment, service, partner_delivery):
        service.reject(session, establishment.id, partner_delivery.id, "Fora da area")
        result = service.edit(
            session, establishment.id, partner_delivery.id, OrderEdit(status="cancelled", customer_name="Maria Silva")
        )
        assert result.order.customer_name == "Maria Silva"
        assert result.order.status == "cancelled"

    def test_paid_through_edit_settles_credit(self, session, establishment, service, make_order):
        today = local_date(utcnow(), TZ)
        order = make_order(
            origin="pdv",
            status="completed",
            payment_method="fiado",
            is_credit_sale=True,
            total_amount=100.0,
            credit_due_date=today - timedelta(days=2),
            credit_interest_rate_per_day=0.01,
        )
        service.edit(session, establishment.id, order.id, OrderEdit(payment_status="paid"))
        stored = reload(session, order)
        assert stored.credit_received_at is not None
        assert stored.credit_interest_amount == 2.0
        assert service.list_receivables(session, establishment.id, today=today).overdue == []


class TestReceivables:
    def test_receive_freezes_interest(self, session, establishment, service, make_order):
        now = utcnow()
        today = local_date(now, TZ)
        order = make_order(
            origin="pdv",
            payment_method="fiado",
            is_credit_sale=True,
            total_amount=100.0,
            credit_due_date=today - timedelta(days=3),
            credit_interest_rate_per_day=0.01,
        )

        listing = service.list_receivables(session, establishment.id, today=today)
        assert [e.total_due for e in listing.overdue] == [103.0]
        assert listing.total_outstanding == 103.0

        result = service.receive_credit(session, establishment.id, order.id, "pix", now=now)
        stored = reload(session, order)
        assert stored.credit_interest_amount == 3.0
        assert stored.payment_status == "paid"
        assert stored.payment_method == "pix"
        assert result.order.credit_received_at is not None
        assert service.list_receivables(session, establishment.id, today=today).overdue == []

        with pytest.raises(HTTPException) as exc:
            service.receive_credit(session, establishment.id, order.id, "pix")
        assert exc.value.status_code == 409

    def test_not_a_credit_sale(self, session, establishment, service, make_order):
        order = make_order(origin="pdv")
        with pytest.raises(HTTPException) as exc:
            service.receive_credit(session, establishment.id, order.id, "pix")
        assert exc.value.status_code == 409


class TestListing:
    def test_tabs_and_counts(self, session, establishment, service, partner_delivery, make_order):
        make_order(channel="totem")
        make_order(origin="pdv")
        make_order(origin="pdv", is_credit_sale=True)

        pending = service.list_tab(session, establishment.id, Tab.PENDING)
        assert [o.order_number for o in pending.orders] == ["SITE-1"]
        assert pending.orders[0].channel == "partner_site"

        counts = service.tab_counts(session, establishment.id)
        assert (counts.pending, counts.kiosk, counts.pdv, counts.rejected, counts.receivables) == (1, 1, 1, 0, 1)

    def test_whatsapp_link(self, session, establishment, service, partner_delivery):
        link = service.whatsapp_link(session, establishment.id, partner_delivery.id)
        assert link.offered
        assert link.url.startswith("https://wa.me/5511987654321")

    def test_view_state_drives_listing(self, session, establishment, service, make_order):
        make_order(channel="totem", customer_name="Joana", order_number="K1")
        make_order(channel="totem", customer_name="Pedro", order_number="K2")

        state = OrdersViewState(active_tab="kiosk", search_text="  joana ")
        listing = service.list_view(session, establishment.id, state)

        assert listing.tab == "kiosk"
        assert [o.order_number for o in listing.orders] == ["K1"]
