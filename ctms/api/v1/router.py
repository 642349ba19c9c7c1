# ctms/api/v1/router.py
from fastapi import APIRouter

from ctms.api.v1.endpoints import (
    accountability,
    audit,
    auth,
    drug,
    drug_units,
    pill_counter,
    reports,
    sites,
    subjects,
    users,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/user", tags=["users"])
api_router.include_router(sites.router, prefix="/sites", tags=["sites"])
api_router.include_router(subjects.router, prefix="/subjects", tags=["subjects"])
api_router.include_router(drug_units.router, prefix="/drug-units", tags=["drug-units"])
api_router.include_router(drug.router, prefix="/drug", tags=["drug"])
api_router.include_router(accountability.router, prefix="/accountability", tags=["accountability"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
api_router.include_router(pill_counter.router, prefix="/pill-counter", tags=["pill-counter"])
