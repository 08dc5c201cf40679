"""Main API router aggregating all module routers."""

from fastapi import APIRouter

from results_api.api.v1.endpoints import (
    batches,
    grading_scales,
    results,
    subject_groups,
    subjects,
)

api_router = APIRouter()

# Result batches: create, import, publish, delete, templates
api_router.include_router(
    batches.router,
    prefix="/results",
    tags=["Result Batches"],
)

# Class result sheets, report cards and direct result import
api_router.include_router(
    results.router,
    prefix="/results",
    tags=["Results"],
)

# Subjects
api_router.include_router(
    subjects.router,
    prefix="/results/subjects",
    tags=["Subjects"],
)

# Grading scales
api_router.include_router(
    grading_scales.router,
    prefix="/results/grading-scales",
    tags=["Grading Scales"],
)

# Subject groups
api_router.include_router(
    subject_groups.router,
    prefix="/results/subject-groups",
    tags=["Subject Groups"],
)
