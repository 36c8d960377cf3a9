"""
Product Staging Ingest Health Check Utilities
=============================================

Runs the async component checks behind ``GET /health``. Only critical checks
decide the overall status; the rest are reported for information.
"""

import time
from typing import Any, Awaitable, Callable, Dict, Tuple

HealthCheck = Callable[[], Awaitable[Dict[str, Any]]]


class IngestHealthChecker:
    """Product Staging Ingest health checker"""

    def __init__(self, service_name: str = "product-staging-ingest") -> None:
        self.service_name = service_name
        self.checks: Dict[str, Tuple[HealthCheck, bool]] = {}
        self.start_time = time.time()

    def add_check(self, name: str, check_func: HealthCheck, critical: bool = True) -> None:
        """Add a health check function"""
        self.checks[name] = (check_func, critical)

    async def run_checks(self) -> Dict[str, Any]:
        """Run all health checks"""
        results: Dict[str, Dict[str, Any]] = {}
        check_start_time = time.time()
        healthy = True

        for name, (check_func, critical) in self.checks.items():
            individual_start = time.time()
            try:
                result = await check_func()
            except Exception as e:
                result = {"status": "error", "error": str(e)}
            result["duration_ms"] = round((time.time() - individual_start) * 1000, 2)
            result["critical"] = critical
            results[name] = result

            if critical and result.get("status") != "healthy":
                healthy = False

        total_time = (time.time() - check_start_time) * 1000
        uptime = time.time() - self.start_time

        return {
            "service": self.service_name,
            "status": "healthy" if healthy else "unhealthy",
            "checks": results,
            "total_duration_ms": round(total_time, 2),
            "uptime_seconds": round(uptime, 2),
            "timestamp": time.time(),
        }
