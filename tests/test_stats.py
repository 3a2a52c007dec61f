from datetime import datetime, timezone

from applications import ApplicationService
from schemas import ApplicationCreate
from stats import recent
from tests.conftest import ADMIN, MANAGER, OTHER_MANAGER, Clock, make_loan, make_user

T1 = datetime(2025, 3, 1, tzinfo=timezone.utc)
T2 = datetime(2025, 3, 2, tzinfo=timezone.utc)
T3 = datetime(2025, 3, 3, tzinfo=timezone.utc)


def apply(applications, loan_id, email="b@x.com", reason=""):
    return applications.submit(loan_id, email, ApplicationCreate(loanId=loan_id, reason=reason))


def test_manager_stats_only_counts_own_loans(stats, loans, applications):
    own = [make_loan(loans, MANAGER, title=f"Own {i}") for i in range(3)]
    foreign = [make_loan(loans, OTHER_MANAGER, title=f"Foreign {i}") for i in range(2)]
    for i in range(5):
        apply(applications, own[i % 3])
    for i in range(3):
        apply(applications, foreign[i % 2])

    first = applications.list_by_loan_owner(MANAGER["email"])[0]
    applications.set_status(first["id"], "approved", MANAGER)

    result = stats.manager_stats(MANAGER["email"])
    assert result["totalLoans"] == 3
    assert result["totalApplications"] == 5
    assert result["pending"] == 4
    assert result["approved"] == 1
    assert result["rejected"] == 0
    assert all(a["loanId"] in own for a in result["recentApplications"])


def test_recent_is_stable_newest_first(store, stats, loans):
    applications = ApplicationService(store, clock=Clock(T1, T2, T2, T3))
    loan_id = make_loan(loans)
    for name in ("t1", "t2a", "t2b", "t3"):
        apply(applications, loan_id, reason=name)

    by_borrower = stats.borrower_stats("b@x.com")["recentApplications"]
    assert [a["reason"] for a in by_borrower] == ["t3", "t2a", "t2b", "t1"]
    by_manager = stats.manager_stats(MANAGER["email"])["recentApplications"]
    assert [a["reason"] for a in by_manager] == ["t3", "t2a", "t2b", "t1"]


def test_recent_keeps_only_five(store, loans, applications):
    loan_id = make_loan(loans)
    created = [apply(applications, loan_id)["id"] for _ in range(7)]
    top = recent(store.find("applications"))
    assert [a["id"] for a in top] == list(reversed(created))[:5]


def test_borrower_stats(stats, loans, applications):
    loan_id = make_loan(loans)
    a = apply(applications, loan_id)
    b = apply(applications, loan_id)
    apply(applications, loan_id)
    apply(applications, loan_id, email="someone@x.com")
    applications.set_status(a["id"], "approved", MANAGER)
    applications.set_status(b["id"], "rejected", MANAGER)
    applications.record_payment(a["id"], "pi_1", 10.0)

    result = stats.borrower_stats("B@x.com")
    assert result["totalApplications"] == 3
    assert result["pending"] == 1
    assert result["approved"] == 1
    assert result["rejected"] == 1
    assert result["paidFees"] == 1
    assert len(result["recentApplications"]) == 3


def test_admin_stats(store, stats, loans, applications):
    make_user(store, "b1@x.com")
    make_user(store, "b2@x.com", status="suspended")
    make_user(store, MANAGER["email"], role="manager")
    make_user(store, ADMIN["email"], role="admin")
    loan_id = make_loan(loans)
    make_loan(loans)
    apply(applications, loan_id, email="b1@x.com")

    result = stats.admin_stats()
    assert result["totalUsers"] == 4
    assert result["totalLoans"] == 2
    assert result["totalApplications"] == 1
    assert result["usersByRole"] == {"borrower": 2, "manager": 1, "admin": 1}
    assert result["suspendedUsers"] == 1
    assert result["applicationsByStatus"] == {"pending": 1, "approved": 0, "rejected": 0}
