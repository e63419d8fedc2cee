from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    HEADTEACHER = "headteacher"
    DEPUTY_HEADTEACHER = "deputy_headteacher"
    TEACHER = "teacher"
    STAFF = "staff"
    STUDENT = "student"
    GUARDIAN = "guardian"


class StudentType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class FeeStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"
    waived = "waived"
    overdue = "overdue"


class InvoiceStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"
    cancelled = "cancelled"
    overdue = "overdue"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CHEQUE = "cheque"
    CARD = "card"


class PaymentMethodType(str, Enum):
    MOBILE_MONEY = "mobile_money"
    BANK = "bank"
    CASH = "cash"
    CARD = "card"


class PaymentStatus(str, Enum):
    pending = "pending"
    verified = "verified"
    failed = "failed"
    reversed = "reversed"


class SponsorType(str, Enum):
    GOVERNMENT = "government"
    NGO = "ngo"
    CORPORATE = "corporate"
    FOUNDATION = "foundation"
    INDIVIDUAL = "individual"


class SponsorPaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    WIRE_TRANSFER = "wire_transfer"


class CoverageType(str, Enum):
    FULL = "full"
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    SPECIFIC_ITEMS = "specific_items"


class AidStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    active = "active"
    suspended = "suspended"
    completed = "completed"
    rejected = "rejected"


class ClearanceStatus(str, Enum):
    pending = "pending"
    auto_approved = "auto_approved"
    manually_approved = "manually_approved"
    rejected = "rejected"


# Aid awards that still reduce what the student owes
AID_EFFECTIVE_STATUSES = (AidStatus.approved.value, AidStatus.active.value)
# Aid awards that block a second award from the same sponsor for the same period
AID_OPEN_STATUSES = (AidStatus.pending.value, AidStatus.approved.value, AidStatus.active.value)
CLEARANCE_ACTIVE_STATUSES = (
    ClearanceStatus.pending.value,
    ClearanceStatus.auto_approved.value,
    ClearanceStatus.manually_approved.value,
)


class TeacherType(str, Enum):
    PERMANENT = "permanent"
    TEMPORARY = "temporary"
    TP = "tp"  # teaching practice
