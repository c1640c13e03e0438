# shopqueue/mcp_server.py
from __future__ import annotations

import logging
from datetime import date
from typing import List, Literal, Optional

from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from shopqueue.dependencies.services import get_engine_cached
from shopqueue.schemas.appointment import (
    Actor,
    Appointment,
    AppointmentListRequest,
    AppointmentStatus,
    ReservationRequest,
)
from shopqueue.schemas.queue import QueueEstimate, ShopWaitEstimate

log = logging.getLogger("shopqueue.mcp")

# Name shown to MCP clients
mcp = FastMCP("shopqueue_mcp")

# --------------------------
# Tool I/O models
# --------------------------
class AppointmentBookInput(BaseModel):
    customer_name: str = Field(..., description="Customer name")
    provider_name: str = Field(..., description="Provider (barber) name, e.g. 'Marcus K.'")
    service_name: str = Field(..., description="Service name, e.g. 'Classic Cut'")
    date: str = Field(..., description="Appointment date, YYYY-MM-DD")
    time_slot: str = Field(..., description="Slot start, HH:MM")


class AppointmentListInput(BaseModel):
    provider_name: Optional[str] = None
    customer_name: Optional[str] = None
    date: Optional[str] = Field(None, description="YYYY-MM-DD")
    status: Optional[List[AppointmentStatus]] = None
    page: int = Field(1, ge=1, description="1-based page number")
    page_size: int = Field(50, ge=1, le=200, description="Appointments per page, at most 200")


class AppointmentListOutput(BaseModel):
    total: int = Field(..., description="Matching appointments across all pages")
    page: int
    page_size: int
    appointments: List[Appointment]


class AppointmentTransitionInput(BaseModel):
    appointment_id: str
    event: Literal["check_in", "complete", "cancel"]
    actor_name: str = "assistant"
    actor_role: Literal["customer", "provider", "admin"] = "customer"


class QueueEstimateInput(BaseModel):
    provider_name: str
    date: Optional[str] = Field(None, description="YYYY-MM-DD, defaults to today")


# --------------------------
# Tools
# --------------------------
@mcp.tool(name="appointments_book", description="Reserve a provider's time slot for a customer")
async def appointments_book(input: AppointmentBookInput, ctx: Context) -> Appointment:
    log.debug("appointments_book input=%s", input.model_dump())
    engine = get_engine_cached()
    out = await engine.appointments.book(ReservationRequest.model_validate(input.model_dump()))
    log.debug("appointments_book output=%s", out.model_dump())
    return out


@mcp.tool(name="appointments_list", description="List appointments one page at a time")
async def appointments_list(input: AppointmentListInput, ctx: Context) -> AppointmentListOutput:
    log.debug("appointments_list input=%s", input.model_dump())
    engine = get_engine_cached()
    page = await engine.appointments.list(AppointmentListRequest.model_validate(input.model_dump()))
    return AppointmentListOutput(
        total=page.total, page=page.page, page_size=page.page_size, appointments=page.items
    )


@mcp.tool(
    name="appointments_transition",
    description="Check in, complete or cancel an appointment",
)
async def appointments_transition(input: AppointmentTransitionInput, ctx: Context) -> Appointment:
    log.debug("appointments_transition input=%s", input.model_dump())
    engine = get_engine_cached()
    actor = Actor(name=input.actor_name, role=input.actor_role)
    out = await engine.lifecycle.transition(input.appointment_id, input.event, actor)
    log.debug("appointments_transition output=%s", out.model_dump())
    return out


@mcp.tool(name="queue_estimate", description="Queue position and wait for each of a provider's customers")
async def queue_estimate(input: QueueEstimateInput, ctx: Context) -> QueueEstimate:
    engine = get_engine_cached()
    day = date.fromisoformat(input.date) if input.date else None
    return await engine.queue.estimate(input.provider_name, day)


@mcp.tool(name="shop_wait", description="Estimated wait for a walk-in customer today")
async def shop_wait(ctx: Context) -> ShopWaitEstimate:
    engine = get_engine_cached()
    return await engine.queue.shop_wait()


@mcp.tool(name="ping", description="Health check")
async def ping(message: str) -> str:
    log.debug("ping %s", message)
    return f"pong: {message}"
