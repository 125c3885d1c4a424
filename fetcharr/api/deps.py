"""FastAPI dependencies."""
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from fetcharr.container import Services
from fetcharr.core.models import UserContext
from fetcharr.core.workflow import RequestWorkflow
from fetcharr.db.database import get_db
from fetcharr.db.repository import RequestStore


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(db: Session = Depends(get_db)) -> RequestStore:
    return RequestStore(db)


def get_current_user(request: Request, store: RequestStore = Depends(get_store)) -> UserContext:
    """User name comes from the fronting auth proxy header."""
    header = request.app.state.config.app.user_header
    username = request.headers.get(header)
    if not username:
        raise HTTPException(status_code=401, detail="Authentication required")
    user = store.get_user_context(username)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


def require_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def get_workflow(
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
) -> RequestWorkflow:
    return RequestWorkflow(store, services.executor, services.managers)
