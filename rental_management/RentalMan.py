import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.orm import Session, selectinload

load_dotenv()

from db.deps import get_rental_db
from db.session import create_tables, engine_rental
from models.rental_models import Customer, InventoryItem, Payment, Rental, RentalItem
from schemas.customers import CustomerUpsert
from schemas.inventory import InventoryItemCreate, InventoryItemUpdate, StockAdjustmentRequest
from schemas.payments import CreatePaymentDto
from schemas.rentals import CreateRentalDto, UpdateRentalDto
from services import inventory_ledger
from services.allocation_service import (
    create_rental as create_rental_allocation,
    delete_customer as delete_customer_guarded,
    delete_inventory_item as delete_item_guarded,
    delete_rental as delete_rental_allocation,
    run_unit_of_work,
    update_rental_status,
)
from services.audit_service import log_audit
from services.catalog_service import map_customer_field, map_item_field, serialize_customer, serialize_item
from services.errors import NotFound, RentalDomainError
from services.payment_service import finance_summary, record_payment, serialize_payment
from services.rental_service import load_rental, serialize_rental

API_LOGGER = logging.getLogger("rental_management.api")
logging.getLogger("rental_management").setLevel((os.environ.get("LOG_LEVEL") or "INFO").strip().upper())

ADMIN_ROLE = "ADMIN"
DEFAULT_ROLE = "STAFF"


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if _env_flag("RENTAL_DB_AUTO_CREATE"):
        create_tables(engine_rental)
    yield


app = FastAPI(title="Rental Management API", lifespan=lifespan)

_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RentalDomainError)
async def handle_domain_error(request: Request, exc: RentalDomainError):
    if exc.status_code >= 500:
        API_LOGGER.error("Request failed path=%s code=%s detail=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "detail": jsonable_encoder(exc.errors())},
    )


def require_caller(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
) -> dict:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Not logged in.")
    role = (x_user_role or DEFAULT_ROLE).strip().upper()
    return {"userID": user_id, "role": role}


def require_admin(caller: dict = Depends(require_caller)) -> dict:
    if caller["role"] != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Admin role required.")
    return caller


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/customers")
def get_customers(db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    customers = db.execute(select(Customer).order_by(Customer.CreatedAt.desc())).scalars().all()
    return [serialize_customer(customer) for customer in customers]


@app.get("/api/customers/{customer_id}")
def get_customer(customer_id: str, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    customer = db.get(Customer, customer_id)
    if not customer:
        raise NotFound("Customer", customer_id)
    return serialize_customer(customer)


@app.post("/api/customers")
def create_customer(payload: CustomerUpsert, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    customer = Customer(CreatedAt=datetime.now(), UpdatedAt=datetime.now())
    for field, value in payload.model_dump().items():
        setattr(customer, map_customer_field(field), value)
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return serialize_customer(customer)


@app.put("/api/customers/{customer_id}")
def update_customer(
    customer_id: str,
    payload: CustomerUpsert,
    db: Session = Depends(get_rental_db),
    caller: dict = Depends(require_caller),
):
    customer = db.get(Customer, customer_id)
    if not customer:
        raise NotFound("Customer", customer_id)
    for field, value in payload.model_dump().items():
        setattr(customer, map_customer_field(field), value)
    customer.UpdatedAt = datetime.now()
    db.commit()
    db.refresh(customer)
    return serialize_customer(customer)


@app.delete("/api/customers/{customer_id}")
def delete_customer(customer_id: str, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    delete_customer_guarded(db, customer_id, actor_id=caller["userID"])
    return {"success": True}


@app.get("/api/inventory")
def get_inventory(db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    items = db.execute(select(InventoryItem).order_by(InventoryItem.CreatedAt.desc())).scalars().all()
    return [serialize_item(item) for item in items]


@app.get("/api/inventory/{item_id}")
def get_inventory_item(item_id: str, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    item = db.get(InventoryItem, item_id, populate_existing=True)
    if not item:
        raise NotFound("Item", item_id)
    return serialize_item(item)


@app.post("/api/inventory")
def create_inventory_item(
    payload: InventoryItemCreate,
    db: Session = Depends(get_rental_db),
    caller: dict = Depends(require_caller),
):
    def _create() -> InventoryItem:
        item = InventoryItem(
            Quantity=payload.quantity,
            AvailableQty=payload.quantity,
            CreatedAt=datetime.now(),
            UpdatedAt=datetime.now(),
        )
        for field, value in payload.model_dump().items():
            column = map_item_field(field)
            if column:
                setattr(item, column, value)
        db.add(item)
        db.flush()
        log_audit(db, "InventoryItem", item.ItemID, "CreateItem", f"{item.Name} quantity={item.Quantity}", user_id=caller["userID"])
        return item

    item = run_unit_of_work(db, _create, operation="create_inventory_item")
    return serialize_item(item)


@app.put("/api/inventory/{item_id}")
def update_inventory_item(
    item_id: str,
    payload: InventoryItemUpdate,
    db: Session = Depends(get_rental_db),
    caller: dict = Depends(require_caller),
):
    changes = payload.model_dump(exclude_unset=True)

    def _update() -> InventoryItem:
        # Stock first: adjust_stock reloads the row and would drop unflushed edits.
        if "quantity" in changes or "availableQty" in changes:
            item = inventory_ledger.adjust_stock(
                db,
                item_id,
                quantity=changes.get("quantity"),
                available_qty=changes.get("availableQty"),
                reason="Item edit",
                actor_id=caller["userID"],
            )
        else:
            item = db.get(InventoryItem, item_id)
            if not item:
                raise NotFound("Item", item_id)
        for field, value in changes.items():
            column = map_item_field(field)
            if column:
                setattr(item, column, value)
        item.UpdatedAt = datetime.now()
        return item

    item = run_unit_of_work(db, _update, operation="update_inventory_item")
    return serialize_item(item)


@app.post("/api/inventory/{item_id}/stock-adjustments")
def adjust_inventory_stock(
    item_id: str,
    payload: StockAdjustmentRequest,
    db: Session = Depends(get_rental_db),
    caller: dict = Depends(require_admin),
):
    item = run_unit_of_work(
        db,
        lambda: inventory_ledger.adjust_stock(
            db,
            item_id,
            quantity=payload.quantity,
            available_qty=payload.availableQty,
            reason=payload.reason.strip(),
            actor_id=caller["userID"],
        ),
        operation="adjust_inventory_stock",
    )
    return serialize_item(item)


@app.delete("/api/inventory/{item_id}")
def delete_inventory_item(item_id: str, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    delete_item_guarded(db, item_id, actor_id=caller["userID"])
    return {"success": True}


@app.get("/api/rentals")
def get_rentals(db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    stmt = (
        select(Rental)
        .options(selectinload(Rental.RentalItems).selectinload(RentalItem.Item))
        .options(selectinload(Rental.Payments))
        .options(selectinload(Rental.Customer))
        .order_by(Rental.CreatedAt.desc())
    )
    rentals = db.execute(stmt).scalars().all()
    return [serialize_rental(rental) for rental in rentals]


@app.get("/api/rentals/{rental_id}")
def get_rental(rental_id: str, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    return serialize_rental(load_rental(db, rental_id))


@app.post("/api/rentals")
def create_rental(payload: CreateRentalDto, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    rental = create_rental_allocation(db, payload, creator_id=caller["userID"])
    return serialize_rental(load_rental(db, rental.RentalID))


@app.put("/api/rentals/{rental_id}")
def update_rental(
    rental_id: str,
    payload: UpdateRentalDto,
    db: Session = Depends(get_rental_db),
    caller: dict = Depends(require_caller),
):
    rental = update_rental_status(db, rental_id, payload, actor_id=caller["userID"])
    return serialize_rental(load_rental(db, rental.RentalID))


@app.delete("/api/rentals/{rental_id}")
def delete_rental(rental_id: str, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    delete_rental_allocation(db, rental_id, actor_id=caller["userID"])
    return {"success": True}


@app.get("/api/payments")
def get_payments(db: Session = Depends(get_rental_db), caller: dict = Depends(require_admin)):
    stmt = (
        select(Payment)
        .options(selectinload(Payment.Rental).selectinload(Rental.Customer))
        .order_by(Payment.CreatedAt.desc())
    )
    payments = db.execute(stmt).scalars().all()
    return [serialize_payment(payment) for payment in payments]


@app.post("/api/payments")
def create_payment(payload: CreatePaymentDto, db: Session = Depends(get_rental_db), caller: dict = Depends(require_caller)):
    payment = run_unit_of_work(
        db,
        lambda: record_payment(
            db,
            rental_id=payload.rentalID,
            amount=payload.amount,
            method=payload.paymentMethod,
            status=payload.paymentStatus,
            transaction_id=payload.transactionID,
            notes=payload.notes,
            recorder_id=caller["userID"],
        ),
        operation="record_payment",
    )
    return serialize_payment(payment)


@app.get("/api/finance/summary")
def get_finance_summary(db: Session = Depends(get_rental_db), caller: dict = Depends(require_admin)):
    return finance_summary(db)
