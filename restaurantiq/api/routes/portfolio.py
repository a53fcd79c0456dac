"""Portfolio dashboard across every restaurant of the current user."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from restaurantiq.api.dependencies import get_current_user, get_portfolio_dao
from restaurantiq.services.auth_service import AuthenticatedUser
from restaurantiq.services.portfolio import PortfolioDashboard, SupabasePortfolioDAO, build_portfolio_dashboard

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


@router.get("/dashboard", response_model=PortfolioDashboard)
async def get_portfolio_dashboard(
    user: AuthenticatedUser = Depends(get_current_user),
    dao: SupabasePortfolioDAO = Depends(get_portfolio_dao),
) -> PortfolioDashboard:
    return await build_portfolio_dashboard(dao, user.id)
