from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from app.config import get_settings
from app.models import Chat, Message
from app.utils.logger import get_logger

settings = get_settings()
logger = get_logger("database")

DOCUMENT_MODELS = [Chat, Message]
DEFAULT_DB_NAME = "clinic_chat"

_mongo_client: AsyncIOMotorClient | None = None


def database_name(uri: str) -> str:
    """Database part of a Mongo URI, e.g. mongodb://host:27017/clinic_chat?x=1 -> clinic_chat."""
    tail = uri.split("://", 1)[-1]
    if "/" not in tail:
        return DEFAULT_DB_NAME
    return tail.split("/", 1)[1].split("?")[0] or DEFAULT_DB_NAME


async def init_db() -> None:
    """Connect to MongoDB and register the chat documents (indexes are created here)."""
    global _mongo_client
    _mongo_client = AsyncIOMotorClient(
        settings.MONGODB_URI,
        serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS,
        tz_aware=True,
    )
    db_name = database_name(settings.MONGODB_URI)
    await init_beanie(database=_mongo_client[db_name], document_models=DOCUMENT_MODELS)
    logger.info(f"Beanie initialized on database '{db_name}'")


async def ping_db() -> bool:
    if _mongo_client is None:
        return False
    try:
        await _mongo_client.admin.command("ping")
        return True
    except PyMongoError as exc:
        logger.warning(f"MongoDB ping failed: {exc}")
        return False


def close_db() -> None:
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
