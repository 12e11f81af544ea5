"""
Request dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request

from jobqueue.engine.container import Engine


def get_engine(request: Request) -> Engine:
    """
    Get the engine built at application startup.

    Raises:
        RuntimeError: If the application has not started.
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("Engine not initialized. Start the application first.")
    return engine


EngineDep = Annotated[Engine, Depends(get_engine)]
