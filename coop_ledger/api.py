"""
FastAPI REST API Module

Exposes ledger posting, settlement passes, alerts, passbook layout, print
jobs and the print watermark over HTTP.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Set

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from .accounts import Account, AccountStatus, AccountType, Direction, PaymentMethod, Transaction
from .alerts import derive_alerts
from .config import LedgerConfig, get_config
from .errors import (
    AccountClosedError, InsufficientFundsError, InvariantViolation, NotFoundError, PersistenceError
)
from .ledger import AccountLedger
from .logging_config import get_logger, setup_logging
from .members import MemberRegistry
from .notifications import merge_read_state, sort_notifications
from .passbook import PrintRow, build_passbook_layout, select_unprinted
from .printing import PrintSessionController, render_text
from .settlement import SettlementScheduler
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface


class LedgerSystem:
    """All engine components wired to one storage backend"""

    def __init__(self, storage: Optional[StorageInterface] = None, settings: Optional[LedgerConfig] = None):
        self.settings = settings or get_config()
        if storage is None:
            if self.settings.use_sqlite:
                storage = SQLiteStorage(self.settings.database_path)
            else:
                storage = InMemoryStorage()
        self.storage = storage
        self.ledger = AccountLedger(self.storage)
        self.members = MemberRegistry(self.storage)
        self.scheduler = SettlementScheduler(self.ledger, self.settings)
        self.printing = PrintSessionController(self.ledger, self.members)
        # Notification ids staff have marked read
        self.read_notification_ids: Set[str] = set()


_system: Optional[LedgerSystem] = None


def get_system() -> LedgerSystem:
    """Dependency returning the process-wide ledger system"""
    global _system
    if _system is None:
        _system = LedgerSystem()
    return _system


# Pydantic models for API requests
class OpenAccountRequest(BaseModel):
    member_id: str
    account_type: AccountType
    account_number: str
    opening_amount: Optional[Decimal] = Field(None, ge=0)
    opening_date: Optional[date] = None
    status: AccountStatus = AccountStatus.ACTIVE
    maturity_date: Optional[date] = None
    low_balance_threshold: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None


class PostTransactionRequest(BaseModel):
    transaction_date: date
    direction: Direction
    amount: Decimal = Field(..., gt=0)
    description: str
    payment_method: Optional[PaymentMethod] = None
    category: Optional[str] = None
    cash_amount: Optional[Decimal] = None
    online_amount: Optional[Decimal] = None
    utr_number: Optional[str] = None
    due_date: Optional[date] = None


class SettlementRequest(BaseModel):
    as_of: date


class RegisterMemberRequest(BaseModel):
    member_id: str
    full_name: str
    phone: str = ""
    father_name: str = ""
    address: str = ""
    city: str = ""
    pin_code: str = ""
    join_date: Optional[date] = None


class PrintRequest(BaseModel):
    selected_row_ids: Optional[List[str]] = None  # None selects every unprinted row
    offset: int = Field(0, ge=0)
    continuation_spacing: bool = True
    show_headings: bool = False


class WatermarkRequest(BaseModel):
    last_printed_transaction_id: str


def _transaction_payload(txn: Transaction) -> Dict:
    return txn.to_dict()


def _account_payload(account: Account) -> Dict:
    payload = account.to_dict()
    payload["code"] = account.code
    payload["transaction_count"] = len(account.log)
    return payload


def _row_payload(row: PrintRow) -> Dict:
    return {
        "id": row.id,
        "date": row.date.isoformat(),
        "particulars": row.particulars,
        "is_printed": row.is_printed,
        "transaction_ids": list(row.transaction_ids),
        "cells": {
            code: {"debit": str(cell.debit), "credit": str(cell.credit), "balance": str(cell.balance)}
            for code, cell in row.cells.items()
        },
    }


def create_app(ledger_system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Cooperative Ledger API",
        description="Member account ledger, maturity settlement and passbook printing",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger = get_logger("coop_ledger.api")

    def current_system() -> LedgerSystem:
        return ledger_system if ledger_system is not None else get_system()

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "coop_ledger_api", "version": "1.0.0"}

    @app.post("/members", status_code=status.HTTP_201_CREATED)
    async def register_member(request: RegisterMemberRequest, system: LedgerSystem = Depends(current_system)):
        """Register a member (the slice the passbook needs)"""
        details = request.model_dump(exclude={"member_id", "full_name"})
        member = system.members.register(request.member_id, request.full_name, **details)
        return {"member_id": member.id, "message": "Member registered successfully"}

    @app.post("/accounts", status_code=status.HTTP_201_CREATED)
    async def open_account(request: OpenAccountRequest, system: LedgerSystem = Depends(current_system)):
        """Open an account with an optional opening amount"""
        try:
            account = system.ledger.open_account(
                member_id=request.member_id,
                account_type=request.account_type,
                account_number=request.account_number,
                opening_amount=request.opening_amount,
                opening_date=request.opening_date,
                status=request.status,
                maturity_date=request.maturity_date,
                low_balance_threshold=request.low_balance_threshold,
                payment_method=request.payment_method,
            )
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail={"error": "persistence_failure", "message": str(e)})
        except ValueError as e:
            raise HTTPException(status_code=400, detail={"error": "invalid_request", "message": str(e)})
        return {"account_id": account.id, "message": "Account opened successfully"}

    @app.get("/accounts/{account_id}")
    async def get_account(account_id: str, system: LedgerSystem = Depends(current_system)):
        """Get account details with its latest transactions"""
        try:
            account = system.ledger.get_account(account_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Account not found")
        payload = _account_payload(account)
        payload["latest_transactions"] = [_transaction_payload(t) for t in account.log.latest(10)]
        return payload

    @app.post("/accounts/{account_id}/transactions", status_code=status.HTTP_201_CREATED)
    async def post_transaction(
        account_id: str,
        request: PostTransactionRequest,
        system: LedgerSystem = Depends(current_system)
    ):
        """Post a transaction; business rejections and storage failures are reported distinctly"""
        try:
            txn = system.ledger.post_transaction(
                account_id,
                request.transaction_date,
                request.direction,
                request.amount,
                request.description,
                payment_method=request.payment_method,
                category=request.category,
                cash_amount=request.cash_amount,
                online_amount=request.online_amount,
                utr_number=request.utr_number,
                due_date=request.due_date,
            )
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Account not found")
        except InsufficientFundsError as e:
            raise HTTPException(status_code=409, detail={"error": "insufficient_funds", "message": str(e)})
        except AccountClosedError as e:
            raise HTTPException(status_code=409, detail={"error": "account_closed", "message": str(e)})
        except PersistenceError as e:
            raise HTTPException(
                status_code=503,
                detail={"error": "persistence_failure", "message": str(e), "retryable": True}
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail={"error": "invalid_request", "message": str(e)})
        return {
            "transaction": _transaction_payload(txn),
            "balance": str(system.ledger.get_account(account_id).balance),
        }

    @app.post("/accounts/{account_id}/verify")
    async def verify_account(account_id: str, system: LedgerSystem = Depends(current_system)):
        """Replay the account's history against its cached balance"""
        try:
            balance = system.ledger.verify_account(account_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Account not found")
        except InvariantViolation as e:
            raise HTTPException(status_code=409, detail={"error": "invariant_violation", "message": str(e)})
        return {"account_id": account_id, "balance": str(balance), "consistent": True}

    @app.post("/settlement/run")
    async def run_settlement(request: SettlementRequest, system: LedgerSystem = Depends(current_system)):
        """Run one settlement pass"""
        results = system.scheduler.run_settlement_pass(request.as_of)
        report = system.scheduler.last_report
        return {
            "settled": [
                {
                    "source_account_id": r.source.id,
                    "destination_account_id": r.destination.id,
                    "amount": str(r.amount),
                    "notification": r.notification.to_dict(),
                }
                for r in results
            ],
            "skipped": report.skipped if report else {},
            "failed": report.failed if report else {},
        }

    @app.get("/members/{member_id}/alerts")
    async def member_alerts(member_id: str, as_of: date, system: LedgerSystem = Depends(current_system)):
        """Point-in-time alerts for a member's accounts"""
        alerts = derive_alerts(system.ledger.get_member_accounts(member_id), as_of, system.settings)
        alerts = sort_notifications(merge_read_state(alerts, system.read_notification_ids))
        return {"notifications": [n.to_dict() for n in alerts]}

    @app.post("/notifications/{notification_id}/read")
    async def mark_read(notification_id: str, system: LedgerSystem = Depends(current_system)):
        system.read_notification_ids.add(notification_id)
        return {"notification_id": notification_id, "read": True}

    def _layout(system: LedgerSystem, member_id: str) -> List[PrintRow]:
        try:
            member = system.members.get_member(member_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail="Member not found")
        return build_passbook_layout(
            system.ledger.get_member_accounts(member_id), member.last_printed_transaction_id
        )

    @app.get("/members/{member_id}/passbook")
    async def passbook(member_id: str, system: LedgerSystem = Depends(current_system)):
        """Passbook rows with printed/unprinted marking"""
        layout = _layout(system, member_id)
        return {
            "rows": [_row_payload(row) for row in layout],
            "unprinted_row_ids": select_unprinted(layout),
        }

    @app.post("/members/{member_id}/passbook/print")
    async def print_passbook(member_id: str, request: PrintRequest, system: LedgerSystem = Depends(current_system)):
        """
        Generate a print job. The watermark is NOT moved; confirm the print
        with POST /members/{member_id}/watermark.
        """
        layout = _layout(system, member_id)
        selection = request.selected_row_ids
        if selection is None:
            selection = select_unprinted(layout)
        job = system.printing.commit_print_selection(
            layout, selection, request.offset, request.continuation_spacing, request.show_headings
        )
        return {
            "lines": [
                {"type": "blank"} if line.is_blank else {"type": "data", "row": _row_payload(line.row)}
                for line in job.lines
            ],
            "text": render_text(job),
            "show_headings": job.show_headings,
            "watermark_candidate": job.watermark_candidate,
        }

    @app.post("/members/{member_id}/watermark")
    async def advance_watermark(member_id: str, request: WatermarkRequest, system: LedgerSystem = Depends(current_system)):
        """Confirm a print run and advance the watermark"""
        try:
            member = system.printing.advance_watermark(member_id, request.last_printed_transaction_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PersistenceError as e:
            logger.error("Watermark update failed for member %s: %s", member_id, e)
            raise HTTPException(
                status_code=503,
                detail={"error": "persistence_failure", "message": str(e), "retryable": False}
            )
        return {"member_id": member.id, "last_printed_transaction_id": member.last_printed_transaction_id}

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the API server with uvicorn"""
    settings = get_config()
    setup_logging(settings.log_level, log_format=settings.log_format, log_file=settings.log_file)
    uvicorn.run(create_app(), host=host or settings.api_host, port=port or settings.api_port)
