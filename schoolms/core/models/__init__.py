from schoolms.auth.models import User
from schoolms.core.models.academic_year import AcademicYear
from schoolms.core.models.term import Term
from schoolms.core.models.class_model import SchoolClass
from schoolms.core.models.student import Student, StudentGuardian
from schoolms.core.models.department import Department
from schoolms.core.models.subject import StudentSubject, Subject
from schoolms.core.models.teacher import Teacher, TeacherClass, TeacherSubject
from schoolms.core.models.fee_structure import FeeStructure, FeeStructureItem
from schoolms.core.models.student_fee import StudentFee
from schoolms.core.models.invoice import Invoice, InvoiceItem
from schoolms.core.models.payment import Payment, PaymentMethodConfig, Receipt
from schoolms.core.models.sponsor import Sponsor, SponsorPayment, SponsorPaymentAllocation
from schoolms.core.models.financial_aid import FinancialAidType, StudentFinancialAid
from schoolms.core.models.clearance import ClearanceRequest, ClearanceType
from schoolms.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "AcademicYear",
    "ClearanceRequest",
    "ClearanceType",
    "Department",
    "FeeAuditLog",
    "FeeStructure",
    "FeeStructureItem",
    "FinancialAidType",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "PaymentMethodConfig",
    "Receipt",
    "SchoolClass",
    "Sponsor",
    "SponsorPayment",
    "SponsorPaymentAllocation",
    "Student",
    "StudentFee",
    "StudentFinancialAid",
    "StudentGuardian",
    "StudentSubject",
    "Subject",
    "Teacher",
    "TeacherClass",
    "TeacherSubject",
    "Term",
    "User",
]
