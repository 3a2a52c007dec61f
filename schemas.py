"""
Database Schemas for LoanLink

Each collection model describes one MongoDB document shape:
User -> "users", Loan -> "loans", Application -> "applications".
The *Update models are the only patches the services accept; they are
validated here before anything reaches the store.
"""

from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, EmailStr, model_validator

Role = Literal["borrower", "manager", "admin"]
UserStatus = Literal["active", "suspended"]
ApplicationStatus = Literal["pending", "approved", "rejected"]
FeeStatus = Literal["unpaid", "paid"]

# ---------------------- Collections ----------------------

class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    email: EmailStr = Field(..., description="Unique key, stored lower-cased")
    name: str = Field("", description="Display name")
    photoURL: Optional[str] = Field(None, description="Avatar image URL")
    role: Role = Field("borrower", description="Role for RBAC")
    status: UserStatus = Field("active")
    suspensionReason: Optional[str] = Field(None, description="Set iff status is suspended")
    passwordHash: str = Field(..., description="Password hash (bcrypt)")


class Loan(BaseModel):
    """
    Loans collection schema
    Collection name: "loans"
    """
    managerEmail: EmailStr = Field(..., description="Owner of the loan")
    title: str
    description: str = ""
    category: str
    interestRate: float = Field(0, ge=0)
    maxLimit: float = Field(0, ge=0)
    requiredDocuments: List[str] = Field(default_factory=list)
    emiPlans: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    applicationFee: Optional[float] = Field(None, gt=0, description="Fee in major units; config default when unset")
    showOnHome: bool = False


class Application(BaseModel):
    """
    Applications collection schema
    Collection name: "applications"
    """
    loanId: str
    loanTitle: str
    category: str
    interestRate: float = 0
    email: EmailStr = Field(..., description="Applicant")
    firstName: str = ""
    lastName: str = ""
    contactNumber: str = ""
    nationalId: str = ""
    incomeSource: str = ""
    monthlyIncome: float = 0
    loanAmount: float = Field(0, ge=0)
    reason: str = ""
    address: str = ""
    notes: str = ""
    status: ApplicationStatus = "pending"
    feeStatus: FeeStatus = "unpaid"
    transactionId: Optional[str] = None
    paidAmount: Optional[float] = None
    paidAt: Optional[datetime] = None
    approvedAt: Optional[datetime] = None
    rejectedAt: Optional[datetime] = None

# ---------------------- Requests ----------------------

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    """Self-service signup. New users are always borrowers; admins promote them."""
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str = ""
    photoURL: Optional[str] = None


class LoanCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    category: str = Field(..., min_length=1)
    interestRate: float = Field(0, ge=0)
    maxLimit: float = Field(0, ge=0)
    requiredDocuments: List[str] = Field(default_factory=list)
    emiPlans: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    applicationFee: Optional[float] = Field(None, gt=0)
    showOnHome: bool = False


class ApplicationCreate(BaseModel):
    """Borrower input. Status, fee and payment fields are never taken from here."""
    loanId: str
    firstName: str = ""
    lastName: str = ""
    contactNumber: str = ""
    nationalId: str = ""
    incomeSource: str = ""
    monthlyIncome: float = Field(0, ge=0)
    loanAmount: float = Field(0, ge=0)
    reason: str = ""
    address: str = ""
    notes: str = ""

# ---------------------- Updates ----------------------

class RoleUpdate(BaseModel):
    role: Role


class StatusUpdate(BaseModel):
    status: UserStatus
    suspensionReason: Optional[str] = None

    @model_validator(mode="after")
    def _reason_matches_status(self):
        if self.status == "suspended":
            if not (self.suspensionReason or "").strip():
                raise ValueError("suspensionReason is required when suspending a user")
            self.suspensionReason = self.suspensionReason.strip()
        else:
            self.suspensionReason = None
        return self


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    photoURL: Optional[str] = None


class LoanUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1)
    interestRate: Optional[float] = Field(None, ge=0)
    maxLimit: Optional[float] = Field(None, ge=0)
    requiredDocuments: Optional[List[str]] = None
    emiPlans: Optional[List[str]] = None
    images: Optional[List[str]] = None
    applicationFee: Optional[float] = Field(None, gt=0)
    showOnHome: Optional[bool] = None


class ApplicationStatusUpdate(BaseModel):
    status: Literal["approved", "rejected"]


class PaymentConfirmation(BaseModel):
    transactionId: str = Field(..., min_length=1, description="Gateway payment intent id")
