"""
Health checks for liveness and readiness probes.

Checks:
- Database connectivity (only when orders are persisted in a database)
- Stripe API reachability (only when the gateway is configured)
"""
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog
from sqlalchemy import text

if TYPE_CHECKING:
    from storefront_checkout.database.connection import Database
    from storefront_checkout.integrations.stripe_client import StripeClient

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Dependencies that are not configured are reported as ``disabled`` and do
    not make the service unhealthy.
    """

    def __init__(
        self,
        database: Optional["Database"] = None,
        stripe_client: Optional["StripeClient"] = None,
    ) -> None:
        self.database = database
        self.stripe_client = stripe_client

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If database check fails
        """
        if self.database is None:
            return {"status": "disabled", "service": "database"}

        try:
            async with self.database.session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()

            return {
                "status": "healthy",
                "service": "database",
                "message": "Database connection successful",
            }

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}") from e

    async def check_stripe(self) -> Dict[str, Any]:
        """
        Check Stripe API reachability.

        Raises:
            HealthCheckError: If Stripe check fails
        """
        if self.stripe_client is None:
            return {"status": "disabled", "service": "stripe"}

        try:
            await self.stripe_client.ping()

            return {
                "status": "healthy",
                "service": "stripe",
                "message": "Stripe API connection successful",
                "circuit_breaker": self.stripe_client.circuit_breaker.state,
            }

        except Exception as e:
            logger.error("stripe_health_check_failed", error=str(e))
            raise HealthCheckError(f"Stripe health check failed: {str(e)}") from e

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks and aggregate the result."""
        checks = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("stripe", self.check_stripe)):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {
                    "status": "unhealthy",
                    "service": name,
                    "error": str(e),
                }
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Liveness probe; does not touch external dependencies."""
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
