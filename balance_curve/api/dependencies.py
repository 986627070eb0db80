"""
Dependency providers for the API routers.
"""

import os

from fastapi import Request

from balance_curve.services.equity_curve_builder import EquityCurveBuilder
from balance_curve.services.factory import create_file_backed_builder

DATA_DIR_ENV = "BALANCE_CURVE_DATA_DIR"


async def get_builder(request: Request) -> EquityCurveBuilder:
    """Builder attached to the app, created from the data directory on first use."""
    builder = getattr(request.app.state, "builder", None)
    if builder is None:
        builder = await create_file_backed_builder(os.environ.get(DATA_DIR_ENV, "data"))
        request.app.state.builder = builder
    return builder
