from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE TABLE IF NOT EXISTS "experiment_session" (
    "id" UUID NOT NULL PRIMARY KEY,
    "origin" VARCHAR(16) NOT NULL  DEFAULT 'incremental',
    "setup_info" TEXT NOT NULL,
    "user_agent" TEXT NOT NULL,
    "device" JSONB,
    "location" JSONB,
    "label" TEXT,
    "machine_name" TEXT,
    "client_start_time" TIMESTAMPTZ NOT NULL,
    "client_end_time" TIMESTAMPTZ,
    "received_at" TIMESTAMPTZ NOT NULL,
    "ip_address" VARCHAR(64),
    "event_count" INT NOT NULL  DEFAULT 0
);
COMMENT ON COLUMN "experiment_session"."origin" IS 'INCREMENTAL: incremental\nONE_SHOT: one_shot';
        CREATE TABLE IF NOT EXISTS "session_event" (
    "id" BIGSERIAL NOT NULL PRIMARY KEY,
    "seq" INT NOT NULL,
    "timestamp" BIGINT NOT NULL,
    "event_type" TEXT NOT NULL,
    "data" TEXT NOT NULL,
    "session_id" UUID NOT NULL REFERENCES "experiment_session" ("id") ON DELETE CASCADE,
    CONSTRAINT "uid_session_eve_session_4c1f0e" UNIQUE ("session_id", "seq")
);
        CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        DROP TABLE IF EXISTS "session_event";
        DROP TABLE IF EXISTS "experiment_session";"""
