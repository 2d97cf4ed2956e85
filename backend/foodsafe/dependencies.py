from dataclasses import dataclass
from typing import Annotated, AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from foodsafe.core.activity.service import SYSTEM_ACTOR
from foodsafe.core.auth.security import decode_access_token
from foodsafe.core.health.service import HealthService, store_checks
from foodsafe.core.notifications.service import InboxNotifier, Notifier
from foodsafe.core.workflow.store import RecordStore, SqlAlchemyRecordStore
from foodsafe.db.session import AsyncSessionLocal

bearer = HTTPBearer(auto_error=False)


@dataclass
class CurrentActor:
    actor_id: str
    email: str | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session


async def get_store(db: AsyncSession = Depends(get_db)) -> RecordStore:
    return SqlAlchemyRecordStore(db)


async def get_notifier(store: RecordStore = Depends(get_store)) -> Notifier:
    return InboxNotifier(store)


async def get_health_service(store: RecordStore = Depends(get_store)) -> HealthService:
    return HealthService(store_checks(store))


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
) -> CurrentActor:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    actor_id = str(payload["sub"])
    if actor_id == SYSTEM_ACTOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reserved actor")
    return CurrentActor(actor_id=actor_id, email=payload.get("email"))
