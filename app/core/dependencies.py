# app/core/dependencies.py
"""
Service wiring for the routers.

Routers depend on these providers instead of module-level singletons so
tests can swap collaborators with app.dependency_overrides.
"""
from functools import lru_cache

from app.core.config import get_settings
from app.repositories.establishment_repo import CourierRepository, EstablishmentRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.side_effect_repo import SideEffectRepository
from app.services.collaborators import (
    PrintJobPrinter,
    SupabaseOrderNumberGenerator,
    SupabaseStockDeduction,
)
from app.services.order_service import OrderService
from app.services.refresh_throttle import ThrottleRegistry
from app.services.side_effects import SideEffectRunner
from app.services.tabs import TabPartitioner


@lru_cache
def get_partitioner() -> TabPartitioner:
    settings = get_settings()
    return TabPartitioner(
        mode=settings.DEPLOYMENT_MODE,
        partner_patterns=settings.PARTNER_SITE_PATTERNS,
        tz_name=settings.TIMEZONE,
    )


@lru_cache
def get_side_effect_runner() -> SideEffectRunner:
    settings = get_settings()
    return SideEffectRunner(
        printer=PrintJobPrinter(),
        stock=SupabaseStockDeduction(),
        order_repo=OrderRepository(),
        establishment_repo=EstablishmentRepository(),
        side_effect_repo=SideEffectRepository(),
        partner_patterns=settings.PARTNER_SITE_PATTERNS,
    )


@lru_cache
def get_order_service() -> OrderService:
    settings = get_settings()
    runner = get_side_effect_runner()
    return OrderService(
        order_repo=OrderRepository(),
        courier_repo=CourierRepository(),
        establishment_repo=EstablishmentRepository(),
        partitioner=get_partitioner(),
        runner=runner,
        printer=runner.printer,
        number_generator=SupabaseOrderNumberGenerator(),
        retention_months=settings.ORDER_RETENTION_MONTHS,
    )


@lru_cache
def get_refresh_throttles() -> ThrottleRegistry:
    settings = get_settings()
    return ThrottleRegistry(
        min_interval=settings.REFRESH_MIN_INTERVAL_SECONDS,
        new_order_spacing=settings.NEW_ORDER_MIN_SPACING_SECONDS,
    )
