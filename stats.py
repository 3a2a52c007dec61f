"""
Dashboard statistics for admins, managers and borrowers.

Everything is recomputed per request from the users, loans and applications
collections; nothing is cached.
"""

import logging
from collections import Counter
from typing import List

from database import APPLICATIONS, INSERTION_ORDER, LOANS, USERS, Store, serialize

logger = logging.getLogger(__name__)

RECENT_LIMIT = 5


def recent(applications: List[dict], limit: int = RECENT_LIMIT) -> List[dict]:
    """Newest first by createdAt; equal timestamps keep their store order."""
    # sorted() is stable for reverse=True too, so ties are not reordered.
    ordered = sorted(applications, key=lambda a: a["createdAt"], reverse=True)
    return [serialize(a) for a in ordered[:limit]]


class StatsService:
    def __init__(self, store: Store):
        self.store = store

    def admin_stats(self) -> dict:
        users = self.store.find(USERS)
        roles = Counter(u.get("role", "borrower") for u in users)
        statuses = Counter(a.get("status") for a in self.store.find(APPLICATIONS))
        return {
            "totalUsers": len(users),
            "totalLoans": self.store.estimated_count(LOANS),
            "totalApplications": sum(statuses.values()),
            "usersByRole": {role: roles.get(role, 0) for role in ("borrower", "manager", "admin")},
            "suspendedUsers": sum(1 for u in users if u.get("status") == "suspended"),
            "applicationsByStatus": {s: statuses.get(s, 0) for s in ("pending", "approved", "rejected")},
        }

    def manager_stats(self, manager_email: str) -> dict:
        loans = self.store.find(LOANS, {"managerEmail": manager_email.lower()})
        loan_ids = [str(l["_id"]) for l in loans]
        applications = self.store.find(APPLICATIONS, {"loanId": {"$in": loan_ids}}, sort=INSERTION_ORDER)
        statuses = Counter(a.get("status") for a in applications)
        return {
            "totalLoans": len(loans),
            "totalApplications": len(applications),
            "pending": statuses.get("pending", 0),
            "approved": statuses.get("approved", 0),
            "rejected": statuses.get("rejected", 0),
            "recentApplications": recent(applications),
        }

    def borrower_stats(self, email: str) -> dict:
        applications = self.store.find(APPLICATIONS, {"email": email.lower()}, sort=INSERTION_ORDER)
        statuses = Counter(a.get("status") for a in applications)
        return {
            "totalApplications": len(applications),
            "pending": statuses.get("pending", 0),
            "approved": statuses.get("approved", 0),
            "rejected": statuses.get("rejected", 0),
            "paidFees": sum(1 for a in applications if a.get("feeStatus") == "paid"),
            "recentApplications": recent(applications),
        }
