from pydantic import BaseModel


class GenderBreakdown(BaseModel):
    male: int = 0
    female: int = 0


class DashboardStats(BaseModel):
    student_count: int
    teacher_count: int
    class_count: int
    subject_count: int
    department_count: int
    student_gender: GenderBreakdown
    teacher_gender: GenderBreakdown
