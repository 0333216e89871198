from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from course_rewards.services.container import Services


def get_services(request: Request) -> Services:
    """The process-wide Services built in the app lifespan.

    Tests override this with ``app.dependency_overrides``.
    """
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]
