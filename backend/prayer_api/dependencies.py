"""
Prayer API Backend: Shared Route Dependencies
===============================================

What:  FastAPI dependencies for collaborators created in the lifespan.
How:   The lifespan stores the dispatcher on `app.state`; routes receive it
       through Depends so tests can swap it with `dependency_overrides`.
"""

from fastapi import Request

from prayer_api.services.notification_dispatcher import NotificationDispatcher


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher
