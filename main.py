import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from applications import ApplicationService
from database import Store, now_utc, serialize
from errors import (
    AuthenticationError,
    AuthorizationError,
    LoanLinkError,
    NotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from loans import LoanService, can_manage
from payments import StripeGateway, to_minor_units
from schemas import (
    ApplicationCreate,
    ApplicationStatusUpdate,
    LoanCreate,
    LoanUpdate,
    LoginRequest,
    PaymentConfirmation,
    ProfileUpdate,
    RegisterRequest,
    RoleUpdate,
    StatusUpdate,
)
from security import clear_auth_cookie, create_access_token, decode_token, set_auth_cookie
from stats import StatsService
from users import UserService, public_user

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------- Dependencies ----------------------

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_gateway(request: Request):
    return request.app.state.gateway


def get_users(store: Store = Depends(get_store)) -> UserService:
    return UserService(store)


def get_loans(store: Store = Depends(get_store)) -> LoanService:
    return LoanService(store)


def get_applications(store: Store = Depends(get_store)) -> ApplicationService:
    return ApplicationService(store)


def get_stats(store: Store = Depends(get_store)) -> StatsService:
    return StatsService(store)


def get_current_user(request: Request, users: UserService = Depends(get_users)) -> dict:
    token = request.cookies.get(config.COOKIE_NAME)
    if not token:
        raise AuthenticationError("Not authenticated")
    payload = decode_token(token)
    user = users.get_by_email(payload["email"])
    if not user:
        raise AuthenticationError("User not found")
    return user


def get_active_user(user: dict = Depends(get_current_user)) -> dict:
    if user.get("status") == "suspended":
        raise AuthorizationError(f"Account suspended: {user.get('suspensionReason') or 'no reason given'}")
    return user


def require_role(*roles: str):
    def dep(user: dict = Depends(get_active_user)):
        if user.get("role") not in roles:
            raise AuthorizationError("Insufficient permissions")
        return user
    return dep


def _load_own_application(application_id: str, user: dict, applications: ApplicationService) -> dict:
    application = applications.get(application_id)
    if application["email"] != user["email"]:
        raise AuthorizationError("Not your application")
    return application

# ---------------------- Routes ----------------------

@router.get("/")
def read_root():
    return {"message": "LoanLink server is running"}


@router.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if config.DATABASE_URL else "Not Set",
        "database_name": store.db.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = store.collection_names()[:10]
        response["connection_status"] = "Connected"
        response["database"] = "Connected & Working"
    except LoanLinkError as e:
        response["database"] = f"Error: {e.message[:80]}"
    return response

# Auth
@router.post("/jwt")
def issue_token(payload: LoginRequest, response: Response, users: UserService = Depends(get_users)):
    user = users.authenticate(payload.email, payload.password)
    token = create_access_token({"email": user["email"], "role": user.get("role", "borrower")})
    set_auth_cookie(response, token)
    return {"success": True}


@router.post("/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return {"success": True}


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return public_user(user)

# Users
@router.post("/users")
def register_user(payload: RegisterRequest, users: UserService = Depends(get_users)):
    return users.register_if_absent(payload.email, payload)


@router.get("/users")
def list_users(search: str = "", role: Optional[str] = None, page: int = 1, limit: int = 20,
               _: dict = Depends(require_role("admin")), users: UserService = Depends(get_users)):
    return users.list_users(search=search, role=role, page=page, limit=limit)


@router.get("/users/{email}/role")
def user_role(email: str, user: dict = Depends(get_active_user), users: UserService = Depends(get_users)):
    if user["email"] != email.lower() and user.get("role") != "admin":
        raise AuthorizationError("Not allowed to look up other users")
    found = users.get_by_email(email)
    if not found:
        raise NotFoundError("User not found")
    return {"role": found.get("role", "borrower"), "status": found.get("status", "active")}


@router.patch("/users/{user_id}/role")
def update_role(user_id: str, payload: RoleUpdate, admin: dict = Depends(require_role("admin")),
                users: UserService = Depends(get_users)):
    return users.set_role(user_id, payload, admin)


@router.patch("/users/{user_id}/status")
def update_status(user_id: str, payload: StatusUpdate, admin: dict = Depends(require_role("admin")),
                  users: UserService = Depends(get_users)):
    return users.set_status(user_id, payload, admin)


@router.patch("/users/{email}/profile")
def update_profile(email: str, payload: ProfileUpdate, user: dict = Depends(get_active_user),
                   users: UserService = Depends(get_users)):
    return users.update_profile(email, payload, user["email"])

# Loans
@router.get("/loans")
def list_loans(page: int = 1, limit: int = 12, search: str = "", category: Optional[str] = None,
               loans: LoanService = Depends(get_loans)):
    return loans.list_loans(page=page, limit=limit, search=search, category=category)


@router.get("/loans/home")
def home_loans(limit: int = 6, loans: LoanService = Depends(get_loans)):
    return loans.featured(limit=limit)


@router.get("/manager/loans")
def my_loans(user: dict = Depends(require_role("manager", "admin")), loans: LoanService = Depends(get_loans)):
    return loans.list_by_manager(user["email"])


@router.post("/loans")
def create_loan(payload: LoanCreate, user: dict = Depends(require_role("manager", "admin")),
                loans: LoanService = Depends(get_loans)):
    return loans.create(payload, user)


@router.get("/loans/{loan_id}")
def get_loan(loan_id: str, loans: LoanService = Depends(get_loans)):
    return serialize(loans.get(loan_id))


@router.put("/loans/{loan_id}")
def update_loan(loan_id: str, payload: LoanUpdate, user: dict = Depends(require_role("manager", "admin")),
                loans: LoanService = Depends(get_loans)):
    return loans.update(loan_id, payload, user)


@router.delete("/loans/{loan_id}")
def delete_loan(loan_id: str, user: dict = Depends(require_role("manager", "admin")),
                loans: LoanService = Depends(get_loans)):
    return loans.delete(loan_id, user)


@router.patch("/loans/toggle-home/{loan_id}")
def toggle_home(loan_id: str, user: dict = Depends(require_role("manager", "admin")),
                loans: LoanService = Depends(get_loans)):
    return loans.toggle_home(loan_id, user)

# Applications
@router.post("/applications")
def submit_application(payload: ApplicationCreate, user: dict = Depends(require_role("borrower")),
                       applications: ApplicationService = Depends(get_applications)):
    return applications.submit(payload.loanId, user["email"], payload)


@router.get("/applications")
def list_applications(status: Optional[str] = None, user: dict = Depends(require_role("manager", "admin")),
                      applications: ApplicationService = Depends(get_applications)):
    if user["role"] == "manager":
        return applications.list_by_loan_owner(user["email"], status=status)
    return applications.list_by_status(status) if status else applications.list_all()


@router.get("/applications/me")
def my_applications(user: dict = Depends(get_active_user),
                    applications: ApplicationService = Depends(get_applications)):
    return applications.list_by_applicant(user["email"])


@router.get("/applications/{application_id}")
def get_application(application_id: str, user: dict = Depends(get_active_user),
                    applications: ApplicationService = Depends(get_applications),
                    loans: LoanService = Depends(get_loans)):
    application = applications.get(application_id)
    if application["email"] == user["email"] or user.get("role") == "admin":
        return application
    if user.get("role") == "manager" and can_manage(loans.get(application["loanId"]), user):
        return application
    raise AuthorizationError("Not allowed to view this application")


@router.patch("/applications/{application_id}/status")
def decide_application(application_id: str, payload: ApplicationStatusUpdate,
                       user: dict = Depends(require_role("manager", "admin")),
                       applications: ApplicationService = Depends(get_applications)):
    return applications.set_status(application_id, payload.status, user)


@router.delete("/applications/{application_id}")
def cancel_application(application_id: str, user: dict = Depends(get_active_user),
                       applications: ApplicationService = Depends(get_applications)):
    return applications.cancel(application_id, user["email"])


@router.post("/applications/{application_id}/payment-intent")
def create_payment_intent(application_id: str, user: dict = Depends(get_active_user),
                          applications: ApplicationService = Depends(get_applications),
                          gateway=Depends(get_gateway)):
    application = _load_own_application(application_id, user, applications)
    if application.get("feeStatus") == "paid":
        raise InvalidTransitionError("Application fee is already paid")
    fee = applications.fee_for(application)
    intent = gateway.create_intent(
        to_minor_units(fee),
        config.CURRENCY,
        {"applicationId": application_id, "email": user["email"]},
    )
    return {"clientSecret": intent["clientSecret"], "amount": fee, "currency": config.CURRENCY}


@router.post("/applications/{application_id}/payment")
def confirm_payment(application_id: str, payload: PaymentConfirmation, user: dict = Depends(get_active_user),
                    applications: ApplicationService = Depends(get_applications),
                    gateway=Depends(get_gateway)):
    application = _load_own_application(application_id, user, applications)
    intent = gateway.retrieve_intent(payload.transactionId)
    if intent["status"] != "succeeded":
        raise ValidationError(f"Payment has not succeeded (status: {intent['status']})")
    if intent["metadata"].get("applicationId") != application_id:
        raise ValidationError("Payment does not belong to this application")
    if intent["amount"] != to_minor_units(applications.fee_for(application)):
        raise ValidationError("Paid amount does not match the application fee")
    return applications.record_payment(application_id, intent["id"], intent["amount"] / 100, now_utc())

# Stats
@router.get("/stats/admin")
def admin_stats(_: dict = Depends(require_role("admin")), stats: StatsService = Depends(get_stats)):
    return stats.admin_stats()


@router.get("/stats/manager/{email}")
def manager_stats(email: str, user: dict = Depends(require_role("manager", "admin")),
                  stats: StatsService = Depends(get_stats)):
    if user["role"] != "admin" and user["email"] != email.lower():
        raise AuthorizationError("Managers can only view their own stats")
    return stats.manager_stats(email)


@router.get("/stats/borrower/{email}")
def borrower_stats(email: str, user: dict = Depends(get_active_user), stats: StatsService = Depends(get_stats)):
    if user.get("role") != "admin" and user["email"] != email.lower():
        raise AuthorizationError("Borrowers can only view their own stats")
    return stats.borrower_stats(email)

# ---------------------- App ----------------------

async def loanlink_error_handler(request: Request, exc: LoanLinkError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(store: Optional[Store] = None, gateway=None) -> FastAPI:
    """Build the API. An injected store stays owned by the caller and is not closed here."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store if store is not None else Store()
        app.state.gateway = gateway if gateway is not None else StripeGateway()
        try:
            yield
        finally:
            if store is None:
                app.state.store.close()

    app = FastAPI(title="LoanLink", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LoanLinkError, loanlink_error_handler)
    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
