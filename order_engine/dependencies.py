from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database import async_session
from order_engine.services.batch_order_service import BatchOrderService
from order_engine.services.notification_service import NotificationService, get_notification_service


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_batch_order_service(db: AsyncSession = Depends(get_db)) -> BatchOrderService:
    return BatchOrderService(db)


async def get_notifier() -> NotificationService:
    return get_notification_service()
