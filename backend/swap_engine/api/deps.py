"""
Route dependencies.

The engine is built once in the application lifespan and kept on app.state;
tests override get_engine with one bound to a temporary database.
"""

from fastapi import Request

from swap_engine.services.factory import SwapEngine


def get_engine(request: Request) -> SwapEngine:
    return request.app.state.engine
