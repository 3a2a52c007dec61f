"""Loan catalog: manager-authored loan offers."""

import logging
import re
from typing import Optional

from database import LOANS, Store, now_utc, serialize, to_object_id
from errors import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from schemas import Loan, LoanCreate, LoanUpdate

logger = logging.getLogger(__name__)


def can_manage(loan: dict, actor: dict) -> bool:
    return actor.get("role") == "admin" or (
        actor.get("role") == "manager" and loan.get("managerEmail") == actor.get("email")
    )


class LoanService:
    def __init__(self, store: Store):
        self.store = store

    def get(self, loan_id: str) -> dict:
        loan = self.store.find_one(LOANS, {"_id": to_object_id(loan_id)})
        if not loan:
            raise NotFoundError("Loan not found")
        return loan

    def _owned(self, loan_id: str, actor: dict) -> dict:
        loan = self.get(loan_id)
        if not can_manage(loan, actor):
            raise AuthorizationError("Only the loan's manager or an admin can change it")
        return loan

    def list_loans(self, page: int = 1, limit: int = 12, search: str = "",
                   category: Optional[str] = None) -> dict:
        filter_dict = {}
        if search:
            filter_dict["title"] = {"$regex": re.escape(search), "$options": "i"}
        if category:
            filter_dict["category"] = category
        page, limit = max(page, 1), max(limit, 1)
        total = self.store.count(LOANS, filter_dict)
        data = self.store.find(LOANS, filter_dict, skip=(page - 1) * limit, limit=limit)
        return {"total": total, "page": page, "limit": limit, "data": [serialize(l) for l in data]}

    def featured(self, limit: int = 6) -> list:
        loans = self.store.find(LOANS, {"showOnHome": True}, limit=limit, sort=[("createdAt", -1)])
        return [serialize(l) for l in loans]

    def list_by_manager(self, email: str) -> list:
        return [serialize(l) for l in self.store.find(LOANS, {"managerEmail": email.lower()})]

    def create(self, payload: LoanCreate, actor: dict) -> dict:
        if actor.get("role") not in ("manager", "admin"):
            raise AuthorizationError("Only managers can post loans")
        doc = Loan(managerEmail=actor["email"], **payload.model_dump()).model_dump()
        loan_id = self.store.create_document(LOANS, doc)
        logger.info("%s created loan %s (%s)", actor["email"], loan_id, doc["title"])
        return {"insertedId": loan_id}

    def update(self, loan_id: str, payload: LoanUpdate, actor: dict) -> dict:
        self._owned(loan_id, actor)
        fields = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            raise ValidationError("Nothing to update")
        fields["updatedAt"] = now_utc()
        result = self.store.update_one(LOANS, {"_id": to_object_id(loan_id)}, {"$set": fields})
        if result.matched_count == 0:
            raise NotFoundError("Loan not found")
        logger.info("%s updated loan %s: %s", actor["email"], loan_id, sorted(fields))
        return {"matchedCount": result.matched_count, "modifiedCount": result.modified_count}

    def delete(self, loan_id: str, actor: dict) -> dict:
        self._owned(loan_id, actor)
        deleted = self.store.delete_one(LOANS, {"_id": to_object_id(loan_id)})
        if not deleted:
            raise NotFoundError("Loan not found")
        logger.info("%s deleted loan %s", actor["email"], loan_id)
        return {"deletedCount": deleted}

    def toggle_home(self, loan_id: str, actor: dict) -> dict:
        loan = self._owned(loan_id, actor)
        current = bool(loan.get("showOnHome"))
        # Conditional on the value just read, so two togglers cannot both flip it.
        guard = {"showOnHome": True} if current else {"showOnHome": {"$ne": True}}
        result = self.store.update_one(
            LOANS,
            {"_id": loan["_id"], **guard},
            {"$set": {"showOnHome": not current, "updatedAt": now_utc()}},
        )
        if result.matched_count == 0:
            logger.warning("Lost toggle-home race on loan %s", loan_id)
            raise InvalidTransitionError("Loan changed concurrently, try again")
        return {"id": loan_id, "showOnHome": not current}
