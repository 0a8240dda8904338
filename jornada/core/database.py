"""
Database management utilities for migrations and readiness checks.
"""

import logging
import asyncio
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from sqlalchemy import text, inspect
from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from jornada.core.config import get_settings
from jornada.db.session import engine

logger = logging.getLogger(__name__)

EXPECTED_TABLES = [
    "tenants", "journeys", "tenant_journeys", "wa_instances", "vendors", "cases",
    "pendencies", "timeline_events", "job_queue", "wa_messages", "employees",
]


class DatabaseManager:
    """
    Database management utility for migrations and operations.
    Handles schema versioning, migration execution, and database health checks.
    """

    def __init__(self):
        self.settings = get_settings()
        self.alembic_cfg = Config("alembic.ini")
        self.alembic_cfg.set_main_option("sqlalchemy.url", str(self.settings.DB_URL))

    async def get_current_revision(self) -> Optional[str]:
        """Get the current database revision."""
        try:
            async with engine.connect() as connection:
                return await connection.run_sync(
                    lambda sync_conn: MigrationContext.configure(sync_conn).get_current_revision()
                )
        except Exception as e:
            logger.error(f"Error getting current revision: {e}")
            return None

    def get_available_revisions(self) -> List[str]:
        """Get list of available migration revisions, oldest first."""
        try:
            script_dir = ScriptDirectory.from_config(self.alembic_cfg)
            return list(reversed([rev.revision for rev in script_dir.walk_revisions()]))
        except Exception as e:
            logger.error(f"Error getting available revisions: {e}")
            return []

    async def check_migration_status(self) -> Dict[str, Any]:
        """Check the current migration status."""
        current_revision = await self.get_current_revision()
        available_revisions = self.get_available_revisions()
        latest = available_revisions[-1] if available_revisions else None

        if not current_revision:
            status = "not_initialized"
            pending_migrations = available_revisions
        elif current_revision == latest:
            status = "up_to_date"
            pending_migrations = []
        else:
            status = "pending_migrations"
            try:
                current_index = available_revisions.index(current_revision)
                pending_migrations = available_revisions[current_index + 1:]
            except ValueError:
                pending_migrations = available_revisions

        return {
            "status": status,
            "current_revision": current_revision,
            "latest_revision": latest,
            "pending_migrations": pending_migrations,
        }

    async def run_migrations_async(self, target_revision: Optional[str] = None) -> bool:
        """Run Alembic migrations from an async context without event-loop conflicts."""
        try:
            rev = target_revision or "head"
            await asyncio.to_thread(command.upgrade, self.alembic_cfg, rev)
            logger.info(f"Successfully ran migrations to {rev} (async)")
            return True
        except Exception as e:
            logger.error(f"Error running migrations (async): {e}")
            return False

    async def check_database_health(self) -> Dict[str, Any]:
        """Connectivity, migration and schema checks."""
        health_status: Dict[str, Any] = {
            "status": "healthy",
            "checks": {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            async with engine.connect() as connection:
                start_time = datetime.now(timezone.utc)
                await connection.execute(text("SELECT 1"))
                elapsed = datetime.now(timezone.utc) - start_time
                health_status["checks"]["connectivity"] = {
                    "status": "pass",
                    "response_time_ms": int(elapsed.total_seconds() * 1000),
                }

                tables = await connection.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
                missing_tables = [table for table in EXPECTED_TABLES if table not in tables]
                health_status["checks"]["schema"] = {
                    "status": "pass" if not missing_tables else "fail",
                    "total_tables": len(tables),
                    "missing_tables": missing_tables,
                }

            migration_status = await self.check_migration_status()
            health_status["checks"]["migrations"] = {
                "status": "pass" if migration_status["status"] == "up_to_date" else "warn",
                "current_revision": migration_status["current_revision"],
                "pending_migrations": len(migration_status["pending_migrations"]),
            }

            checks = health_status["checks"].values()
            if any(check["status"] == "fail" for check in checks):
                health_status["status"] = "unhealthy"
            elif any(check["status"] == "warn" for check in checks):
                health_status["status"] = "degraded"

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            health_status["status"] = "unhealthy"
            health_status["error"] = str(e)

        return health_status


# Global database manager instance
db_manager = DatabaseManager()


async def initialize_database():
    """Initialize database with migrations."""
    logger.info("Running database migrations...")
    success = await db_manager.run_migrations_async()
    if success:
        logger.info("Database migrations completed successfully")
    else:
        logger.error("Database migrations failed")
        raise RuntimeError("Failed to run database migrations")
