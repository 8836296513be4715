from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from skybook.config import get_settings
from skybook.errors import BookingError
from skybook.runtime import SkybookRuntime

settings = get_settings()
app = FastAPI(title="Skybook API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

runtime = SkybookRuntime(settings)


@app.exception_handler(BookingError)
def handle_booking_error(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


class PassengerDetailsRequest(BaseModel):
    name: str | None = None
    passport: str | None = None
    special_requests: dict[str, Any] = Field(default_factory=dict)


class CreateBookingRequest(BaseModel):
    flight_id: int
    class_id: int
    seat_ids: list[int] = Field(min_length=1)
    passengers: int = Field(ge=1)
    passenger_details: list[PassengerDetailsRequest] = Field(default_factory=list)


class InitiatePaymentRequest(BaseModel):
    gateway: str


class CancelFlightRequest(BaseModel):
    reason: str | None = None


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "skybook-api", "status": "ok"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/flights/{flight_id}/seats")
def get_flight_seats(
    flight_id: int,
    class_id: int | None = None,
    available_only: bool = True,
    limit: int | None = None,
) -> dict[str, Any]:
    return runtime.flight_seats(flight_id, class_id=class_id, available_only=available_only, limit=limit)


@app.post("/api/bookings", status_code=201)
def create_booking(payload: CreateBookingRequest, user_id: int = Header(alias="X-User-Id")) -> dict[str, Any]:
    return runtime.create_booking(
        user_id=user_id,
        flight_id=payload.flight_id,
        class_id=payload.class_id,
        seat_ids=payload.seat_ids,
        passengers=payload.passengers,
        passenger_details=[entry.model_dump() for entry in payload.passenger_details],
    )


@app.get("/api/bookings")
def list_bookings(page: int = 1, limit: int = 10, user_id: int = Header(alias="X-User-Id")) -> dict[str, Any]:
    return runtime.list_bookings(user_id, page=page, limit=limit)


@app.get("/api/bookings/{reference}")
def get_booking(reference: str, user_id: int = Header(alias="X-User-Id")) -> dict[str, Any]:
    return runtime.get_booking(reference, user_id)


@app.post("/api/bookings/{reference}/cancel")
def cancel_booking(reference: str, user_id: int = Header(alias="X-User-Id")) -> dict[str, Any]:
    return runtime.cancel_booking(reference, user_id)


@app.post("/api/bookings/{reference}/check-in")
def check_in(reference: str, user_id: int = Header(alias="X-User-Id")) -> dict[str, Any]:
    return runtime.check_in(reference, user_id)


@app.post("/api/bookings/{reference}/payments")
def initiate_payment(
    reference: str,
    payload: InitiatePaymentRequest,
    user_id: int = Header(alias="X-User-Id"),
) -> dict[str, Any]:
    return runtime.initiate_payment(reference, user_id, payload.gateway)


@app.post("/api/bookings/{reference}/payments/sync")
def sync_payment(reference: str, user_id: int = Header(alias="X-User-Id")) -> dict[str, Any]:
    return runtime.sync_payment(reference, user_id)


@app.post("/api/payments/webhooks/{gateway}")
async def payment_webhook(gateway: str, request: Request) -> dict[str, Any]:
    body = await request.body()
    return await run_in_threadpool(runtime.handle_webhook, gateway, body, dict(request.headers))


@app.get("/api/audit/{reference}")
def get_audit_history(reference: str) -> list[dict[str, Any]]:
    return runtime.audit_history(reference)


@app.post("/api/admin/flights/{flight_id}/cancel")
def cancel_flight(flight_id: int, payload: CancelFlightRequest | None = None) -> dict[str, Any]:
    return runtime.cancel_flight(flight_id, reason=payload.reason if payload else None)


@app.post("/api/admin/flights/{flight_id}/retry-reversals")
def retry_flight_reversals(flight_id: int) -> dict[str, Any]:
    return runtime.retry_flight_reversals(flight_id)


@app.delete("/api/admin/flights/{flight_id}")
def delete_flight(flight_id: int) -> dict[str, Any]:
    return runtime.delete_flight(flight_id)
