"""
Loan application lifecycle.

Two independent state machines live on each application:

    status:    pending -> approved | rejected
    feeStatus: unpaid  -> paid

Every transition is a single conditional write scoped by the current state,
so of two racing callers exactly one matches and the other gets
InvalidTransitionError. A read only follows a write that matched nothing, to
tell a missing application apart from a lost transition.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

import config
from database import APPLICATIONS, INSERTION_ORDER, LOANS, Store, now_utc, serialize, to_object_id
from errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from loans import can_manage
from schemas import Application, ApplicationCreate

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("approved", "rejected")


class ApplicationService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = now_utc):
        self.store = store
        self.clock = clock

    def _find(self, application_id: str) -> dict:
        application = self.store.find_one(APPLICATIONS, {"_id": to_object_id(application_id)})
        if not application:
            raise NotFoundError("Application not found")
        return application

    def get(self, application_id: str) -> dict:
        return serialize(self._find(application_id))

    def submit(self, loan_id: str, applicant_email: str, payload: ApplicationCreate) -> dict:
        loan = self.store.find_one(LOANS, {"_id": to_object_id(loan_id)})
        if not loan:
            raise ValidationError("Loan does not exist")

        fields = payload.model_dump(exclude={"loanId"})
        doc = Application(
            **fields,
            loanId=str(loan["_id"]),
            loanTitle=loan.get("title", ""),
            category=loan.get("category", ""),
            interestRate=loan.get("interestRate", 0),
            email=applicant_email.lower(),
        ).model_dump()
        # Server-assigned state; nothing from the caller reaches these.
        doc.update({
            "status": "pending",
            "feeStatus": "unpaid",
            "transactionId": None,
            "paidAmount": None,
            "paidAt": None,
            "approvedAt": None,
            "rejectedAt": None,
            "createdAt": self.clock(),
        })
        application_id = self.store.create_document(APPLICATIONS, doc)
        logger.info("%s applied for loan %s (application %s)", doc["email"], doc["loanId"], application_id)
        return serialize(self._find(application_id))

    def set_status(self, application_id: str, new_status: str, actor: dict) -> dict:
        if new_status not in TERMINAL_STATUSES:
            raise ValidationError(f"Status must be one of {TERMINAL_STATUSES}")
        application = self._find(application_id)
        loan = self.store.find_one(LOANS, {"_id": to_object_id(application["loanId"])}) or {}
        if not can_manage(loan, actor):
            raise AuthorizationError("Only the loan's manager or an admin can decide applications")

        stamp = self.clock()
        patch = {"status": new_status, "updatedAt": stamp}
        patch["approvedAt" if new_status == "approved" else "rejectedAt"] = stamp
        result = self.store.update_one(
            APPLICATIONS,
            {"_id": application["_id"], "status": "pending"},
            {"$set": patch},
        )
        if result.matched_count == 0:
            logger.warning("Rejected status change on %s to %s: no longer pending", application_id, new_status)
            raise InvalidTransitionError("Application has already been decided")
        logger.info("%s %s application %s", actor.get("email"), new_status, application_id)
        return self.get(application_id)

    def record_payment(self, application_id: str, transaction_id: str, amount: float,
                       paid_at: Optional[datetime] = None) -> dict:
        oid = to_object_id(application_id)
        stamp = self.clock()
        result = self.store.update_one(
            APPLICATIONS,
            {"_id": oid, "feeStatus": {"$ne": "paid"}},
            {"$set": {
                "feeStatus": "paid",
                "transactionId": transaction_id,
                "paidAmount": amount,
                "paidAt": paid_at or stamp,
                "updatedAt": stamp,
            }},
        )
        if result.matched_count == 0:
            self._find(application_id)
            logger.warning("Duplicate payment %s for application %s ignored", transaction_id, application_id)
            raise InvalidTransitionError("Application fee is already paid")
        logger.info("Application %s fee paid (%s, %.2f)", application_id, transaction_id, amount)
        return self.get(application_id)

    def cancel(self, application_id: str, actor_email: str) -> dict:
        application = self._find(application_id)
        if application.get("email") != actor_email.lower():
            raise AuthorizationError("Only the applicant can cancel an application")
        deleted = self.store.delete_one(
            APPLICATIONS,
            {"_id": application["_id"], "email": application["email"], "status": "pending"},
        )
        if not deleted:
            raise InvalidTransitionError("Only pending applications can be cancelled")
        logger.info("%s cancelled application %s", actor_email, application_id)
        return {"deletedCount": deleted}

    def fee_for(self, application: dict) -> float:
        """The authoritative application fee, in major currency units."""
        loan = self.store.find_one(LOANS, {"_id": to_object_id(application["loanId"])}) or {}
        return float(loan.get("applicationFee") or config.APPLICATION_FEE)

    # ---------------------- Projections ----------------------

    def list_by_loan_owner(self, manager_email: str, status: Optional[str] = None) -> List[dict]:
        loan_ids = [str(l["_id"]) for l in self.store.find(LOANS, {"managerEmail": manager_email.lower()})]
        filter_dict = {"loanId": {"$in": loan_ids}}
        if status:
            filter_dict["status"] = status
        return [serialize(a) for a in self.store.find(APPLICATIONS, filter_dict, sort=INSERTION_ORDER)]

    def list_by_applicant(self, email: str) -> List[dict]:
        return [serialize(a) for a in self.store.find(APPLICATIONS, {"email": email.lower()}, sort=INSERTION_ORDER)]

    def list_by_status(self, status: str) -> List[dict]:
        return [serialize(a) for a in self.store.find(APPLICATIONS, {"status": status}, sort=INSERTION_ORDER)]

    def list_all(self) -> List[dict]:
        return [serialize(a) for a in self.store.find(APPLICATIONS, sort=INSERTION_ORDER)]
