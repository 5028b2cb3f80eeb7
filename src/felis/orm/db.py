from tortoise import Tortoise

from felis.settings import settings


def tortoise_config(db_url: str, with_migrations: bool = True) -> dict:
    models = ["felis.orm.models"]
    if with_migrations:
        models.append("aerich.models")
    return {
        "connections": {"default": db_url},
        "apps": {
            "models": {
                "models": models,
                "default_connection": "default",
            }
        },
        "use_tz": True,
        "timezone": "UTC",
    }


TORTOISE_ORM = tortoise_config(settings.db.url)


async def init_db(generate_schemas: bool = True) -> None:
    await Tortoise.init(config=TORTOISE_ORM)
    if generate_schemas:
        await Tortoise.generate_schemas()


async def close_db() -> None:
    await Tortoise.close_connections()
