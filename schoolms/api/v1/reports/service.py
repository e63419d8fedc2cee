from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolms.api.v1.fees.ledger import ZERO, money, to_decimal
from schoolms.auth.models import User
from schoolms.core.enums import FeeStatus, InvoiceStatus
from schoolms.core.models import (
    AcademicYear,
    Invoice,
    Payment,
    SchoolClass,
    Student,
    StudentFee,
    StudentGuardian,
    Term,
)

from .schemas import (
    FinancialOverview,
    OutstandingFeeRow,
    OutstandingFeesReport,
    PaymentMethodBreakdown,
    TermBreakdown,
)


def collection_rate(collected, total) -> Decimal:
    total = to_decimal(total)
    if total <= ZERO:
        return money(ZERO)
    return money(to_decimal(collected) / total * Decimal("100"))


async def get_financial_overview(db: AsyncSession) -> FinancialOverview:
    totals = await db.execute(
        select(
            func.coalesce(func.sum(StudentFee.total_amount), 0),
            func.coalesce(func.sum(StudentFee.amount_paid), 0),
            func.coalesce(func.sum(StudentFee.discount_amount), 0),
            func.coalesce(func.sum(StudentFee.balance), 0),
        ).where(StudentFee.status != FeeStatus.waived.value)
    )
    total_assigned, total_collected, total_aid, outstanding = totals.one()

    total_students = (await db.execute(select(func.count(Student.id)))).scalar_one()
    total_invoices = (await db.execute(select(func.count(Invoice.id)))).scalar_one()
    total_payments = (await db.execute(select(func.count(Payment.id)))).scalar_one()

    by_term = await db.execute(
        select(
            AcademicYear.name,
            Term.name,
            func.coalesce(func.sum(StudentFee.total_amount), 0),
            func.coalesce(func.sum(StudentFee.amount_paid), 0),
            func.coalesce(func.sum(StudentFee.balance), 0),
        )
        .join(AcademicYear, AcademicYear.id == StudentFee.academic_year_id)
        .join(Term, Term.id == StudentFee.term_id)
        .where(StudentFee.status != FeeStatus.waived.value)
        .group_by(AcademicYear.name, Term.name, AcademicYear.start_date, Term.start_date)
        .order_by(AcademicYear.start_date.desc(), Term.start_date.desc())
    )
    methods = await db.execute(
        select(Payment.payment_method, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .group_by(Payment.payment_method)
        .order_by(func.sum(Payment.amount).desc())
    )

    return FinancialOverview(
        total_fees_assigned=money(total_assigned),
        total_collected=money(total_collected),
        total_aid=money(total_aid),
        outstanding_balance=money(outstanding),
        collection_rate=collection_rate(total_collected, total_assigned),
        total_students=int(total_students or 0),
        total_invoices=int(total_invoices or 0),
        total_payments=int(total_payments or 0),
        breakdown_by_term=[
            TermBreakdown(
                academic_year=year_name,
                term=term_name,
                total_fees=money(total),
                collected=money(paid),
                outstanding=money(balance),
                collection_rate=collection_rate(paid, total),
            )
            for year_name, term_name, total, paid, balance in by_term.all()
        ],
        payment_methods=[
            PaymentMethodBreakdown(method=method, count=int(count), total_amount=money(amount))
            for method, count, amount in methods.all()
        ],
    )


async def _primary_guardian_phones(db: AsyncSession, student_ids) -> Dict[UUID, Optional[str]]:
    if not student_ids:
        return {}
    result = await db.execute(
        select(StudentGuardian.student_id, User.phone_number)
        .join(User, User.id == StudentGuardian.guardian_id)
        .where(StudentGuardian.student_id.in_(student_ids))
        .order_by(StudentGuardian.is_primary.desc())
    )
    phones: Dict[UUID, Optional[str]] = {}
    for student_id, phone in result.all():
        phones.setdefault(student_id, phone)
    return phones


async def get_outstanding_fees(
    db: AsyncSession,
    academic_year_id: Optional[UUID] = None,
    term_id: Optional[UUID] = None,
    class_id: Optional[UUID] = None,
    today: Optional[date] = None,
) -> OutstandingFeesReport:
    """Students with open invoice balances, largest debt first."""
    today = today or date.today()
    stmt = (
        select(Invoice, Student.student_number, Student.phone_number, User.first_name, User.last_name, SchoolClass.name)
        .join(Student, Student.id == Invoice.student_id)
        .join(User, User.id == Student.user_id)
        .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
        .where(
            Invoice.balance > 0,
            Invoice.status.notin_((InvoiceStatus.paid.value, InvoiceStatus.cancelled.value)),
        )
    )
    if academic_year_id:
        stmt = stmt.where(Invoice.academic_year_id == academic_year_id)
    if term_id:
        stmt = stmt.where(Invoice.term_id == term_id)
    if class_id:
        stmt = stmt.where(Student.class_id == class_id)
    result = await db.execute(stmt)

    grouped: Dict[UUID, dict] = {}
    invoices_by_student = defaultdict(list)
    for inv, number, phone, first_name, last_name, class_name in result.all():
        grouped.setdefault(
            inv.student_id,
            {
                "student_number": number,
                "student_name": f"{first_name} {last_name}",
                "class_name": class_name,
                "phone_number": phone,
            },
        )
        invoices_by_student[inv.student_id].append(inv)

    guardian_phones = await _primary_guardian_phones(db, list(grouped))
    rows: List[OutstandingFeeRow] = []
    for student_id, info in grouped.items():
        invoices = invoices_by_student[student_id]
        oldest_due = min(inv.due_date for inv in invoices)
        rows.append(
            OutstandingFeeRow(
                student_id=student_id,
                guardian_phone=guardian_phones.get(student_id),
                open_invoices=len(invoices),
                total_outstanding=money(sum((to_decimal(inv.balance) for inv in invoices), Decimal("0"))),
                oldest_invoice_date=min(inv.invoice_date for inv in invoices),
                days_overdue=max((today - oldest_due).days, 0),
                **info,
            )
        )
    rows.sort(key=lambda r: r.total_outstanding, reverse=True)
    return OutstandingFeesReport(
        total_outstanding=money(sum((r.total_outstanding for r in rows), Decimal("0"))),
        student_count=len(rows),
        students=rows,
    )
