"""Centralized v1 API router."""

from fastapi import APIRouter

from src.modules.account.router import router as account_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(account_router)
