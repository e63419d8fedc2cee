from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from schoolms.api.v1.academic_years.router import router as academic_years_router
from schoolms.api.v1.auth.router import router as auth_router
from schoolms.api.v1.classes.router import router as classes_router
from schoolms.api.v1.clearances.router import router as clearances_router
from schoolms.api.v1.dashboard.router import router as dashboard_router
from schoolms.api.v1.departments.router import router as departments_router
from schoolms.api.v1.fees.router import router as fees_router
from schoolms.api.v1.financial_aid.router import router as financial_aid_router
from schoolms.api.v1.invoices.router import router as invoices_router
from schoolms.api.v1.payments.router import router as payments_router
from schoolms.api.v1.reports.router import router as reports_router
from schoolms.api.v1.sponsors.router import router as sponsors_router
from schoolms.api.v1.students.router import router as students_router
from schoolms.api.v1.subjects.router import router as subjects_router
from schoolms.api.v1.teachers.router import router as teachers_router
from schoolms.core.config import settings
from schoolms.core.logging import setup_logging


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=f"{settings.school_name} API")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(academic_years_router)
    app.include_router(classes_router)
    app.include_router(departments_router)
    app.include_router(subjects_router)
    app.include_router(students_router)
    app.include_router(teachers_router)
    app.include_router(fees_router)
    app.include_router(invoices_router)
    app.include_router(payments_router)
    app.include_router(sponsors_router)
    app.include_router(financial_aid_router)
    app.include_router(clearances_router)
    app.include_router(reports_router)
    app.include_router(dashboard_router)

    return app


app = create_app()
