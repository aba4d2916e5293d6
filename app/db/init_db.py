import asyncio
import logging

from sqlalchemy import select

from app.core.security import normalize_email
from app.core.settings import settings
from app.db.session import Database
from app.models.account import Account
from app.schemas.users import Role

logger = logging.getLogger(__name__)


async def init_db(database: Database) -> None:
    """Seed the configured admin account, promoting it if it already exists."""
    if not settings.seed_admin_email:
        return
    email = normalize_email(settings.seed_admin_email)
    async with database.sessionmaker() as session:
        result = await session.execute(select(Account).where(Account.email == email))
        account = result.scalar_one_or_none()

        if account is None:
            session.add(Account(email=email, role=Role.ADMIN.value, name=settings.seed_admin_name))
            await session.commit()
            logger.info("Seeded admin account %s", email)
        elif account.role != Role.ADMIN.value:
            account.role = Role.ADMIN.value
            await session.commit()
            logger.info("Promoted seed account %s to admin", email)


async def _main() -> None:
    database = Database(settings.database_url)
    try:
        await init_db(database)
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(_main())
