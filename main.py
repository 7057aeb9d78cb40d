"""
Main application file for Medtracker.
All routes consolidated here - no separate router files.
"""

import asyncio
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import business_logic
import export_logic
import scheduler
from errors import MedicationNotFoundError, StorageError

# Load environment variables
load_dotenv()

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize app
app = FastAPI(title="Medtracker")

# Background midnight scheduler task (set on startup)
_scheduler_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup_event():
    """Initialize database and arm the daily stock reduction timer."""
    global _scheduler_task

    logger.info("Starting Medtracker application...")
    business_logic.initialize_database()
    if not business_logic.DATABASE_CONFIGURED:
        logger.warning("Database not configured - daily stock reduction disabled")
        return

    if business_logic.get_app_settings()['reduce_on_startup']:
        try:
            result = business_logic.run_daily_reduction()
            logger.info(f"Startup stock reduction check: ran={result['ran']}")
        except Exception as e:
            logger.error(f"Startup stock reduction failed: {e}")
            # Don't raise - the midnight scheduler will run it

    _scheduler_task = asyncio.create_task(
        scheduler.daily_reduction_loop(business_logic.run_daily_reduction)
    )
    logger.info("Medtracker application started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the scheduler and close the database connection."""
    if _scheduler_task is not None:
        _scheduler_task.cancel()
        try:
            await _scheduler_task
        except asyncio.CancelledError:
            pass
    import database_manager as db
    db.close_connection()
    logger.info("Medtracker application stopped")


def _error_response(e: Exception, action: str) -> JSONResponse:
    """Map a failure to the JSON error envelope and HTTP status."""
    if isinstance(e, MedicationNotFoundError):
        return JSONResponse(status_code=404, content={"success": False, "error": str(e)})
    if isinstance(e, StorageError):
        logger.error(f"Storage unavailable while {action}: {e}")
        return JSONResponse(status_code=503, content={"success": False, "error": str(e)})
    if isinstance(e, ValueError):
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    if isinstance(e, KeyError):
        return JSONResponse(status_code=400, content={"success": False, "error": f"Missing required field: {e}"})
    logger.error(f"Error {action}: {e}", exc_info=True)
    return JSONResponse(status_code=500, content={"success": False, "error": str(e)})


# ==================== HEALTH CHECK ====================

@app.get("/health")
async def health_check():
    """
    Health check endpoint for Docker and monitoring.

    Tests actual database connectivity by executing a simple query.
    Returns 200 if healthy, 503 if database is unreachable.
    """
    try:
        if not business_logic.DATABASE_CONFIGURED:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "reason": "Database not configured"}
            )

        import database_manager as db
        if db.check_connection():
            return {"status": "healthy", "database": "connected"}
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "Database connection lost"}
        )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "reason": "Health check error"}
        )


# ==================== MEDICATION API ROUTES ====================

@app.get("/api/medications")
async def list_medications(active_only: bool = False):
    """List medications with derived stock and cost figures."""
    try:
        return {"success": True, "data": business_logic.get_all_medications(active_only)}
    except Exception as e:
        return _error_response(e, "listing medications")


@app.post("/api/medications")
async def create_medication(request: Request):
    """
    Create medication.

    Request body:
    {
        "name": "Metformin",
        "dosage": "500mg",
        "frequency": 2,
        "timings": ["Morning", "Evening"],
        "quantity_per_fill": 60,
        "current_quantity": 60,
        "cost": 31.60,
        ...
    }
    """
    try:
        data = await request.json()
        result = await asyncio.to_thread(business_logic.create_medication, data)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "creating medication")


@app.get("/api/medications/{medication_id}")
async def get_medication(medication_id: str):
    """Get one medication."""
    try:
        return {"success": True, "data": business_logic.get_medication(medication_id)}
    except Exception as e:
        return _error_response(e, f"getting medication {medication_id}")


@app.put("/api/medications/{medication_id}")
async def update_medication(medication_id: str, request: Request):
    """
    Update medication (edit form).

    Sending total_dispensings_purchased > 0 records a purchase of
    dispensings x cost on purchase_date (default today).
    """
    try:
        data = await request.json()
        result = await asyncio.to_thread(business_logic.update_medication, medication_id, data)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, f"updating medication {medication_id}")


@app.delete("/api/medications/{medication_id}")
async def delete_medication(medication_id: str):
    """Delete medication with its taken and purchase history."""
    try:
        business_logic.delete_medication(medication_id)
        return {"success": True}
    except Exception as e:
        return _error_response(e, f"deleting medication {medication_id}")


# ==================== DOSE TRACKING API ====================

@app.get("/api/medications/{medication_id}/taken/{taken_date}")
async def get_taken_timings(medication_id: str, taken_date: str):
    """Timings taken for a medication on a date."""
    try:
        return {"success": True, "data": business_logic.get_taken_timings(medication_id, taken_date)}
    except Exception as e:
        return _error_response(e, "getting taken timings")


@app.post("/api/medications/{medication_id}/taken")
async def mark_taken(medication_id: str, request: Request):
    """
    Mark a timing as taken.

    Request body:
    {
        "timing": "Morning",
        "date": "2025-03-01"
    }
    """
    try:
        data = await request.json()
        result = await asyncio.to_thread(business_logic.mark_taken, medication_id, data["timing"], data["date"])
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "marking medication taken")


@app.delete("/api/medications/{medication_id}/taken")
async def unmark_taken(medication_id: str, timing: str, date: str):
    """Unmark a taken timing (query params: timing, date)."""
    try:
        result = await asyncio.to_thread(business_logic.unmark_taken, medication_id, timing, date)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "unmarking medication taken")


@app.post("/api/stock/daily-reduction")
async def run_daily_reduction():
    """Run the daily stock reduction now (no-op if already run today)."""
    try:
        result = await asyncio.to_thread(business_logic.run_daily_reduction)
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "running daily stock reduction")


# ==================== PURCHASE API ====================

@app.get("/api/medications/{medication_id}/purchases")
async def get_purchase_history(medication_id: str):
    """Purchase history for a medication."""
    try:
        return {"success": True, "data": business_logic.get_purchase_history(medication_id)}
    except Exception as e:
        return _error_response(e, "getting purchase history")


@app.post("/api/medications/{medication_id}/purchases")
async def record_purchase(medication_id: str, request: Request):
    """
    Record a purchase.

    Request body:
    {
        "amount": 31.60,
        "purchase_date": "2025-03-01"
    }
    """
    try:
        data = await request.json()
        result = await asyncio.to_thread(
            business_logic.record_purchase, medication_id, data["amount"], data["purchase_date"]
        )
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "recording purchase")


@app.get("/api/medications/{medication_id}/yearly-total")
async def get_yearly_total(medication_id: str, as_of: Optional[str] = None):
    """Effective yearly cost as of a date (default today)."""
    try:
        return {"success": True, "data": business_logic.get_yearly_total(medication_id, as_of)}
    except Exception as e:
        return _error_response(e, "getting yearly total")


@app.put("/api/medications/{medication_id}/yearly-total")
async def override_yearly_total(medication_id: str, request: Request):
    """
    Manually override the current year's total.

    Request body:
    {
        "amount": 120.00
    }
    """
    try:
        data = await request.json()
        result = await asyncio.to_thread(business_logic.override_yearly_total, medication_id, data["amount"])
        return {"success": True, "data": result}
    except Exception as e:
        return _error_response(e, "overriding yearly total")


@app.get("/api/purchases/recent")
async def get_recent_purchases(limit: int = 10):
    """Most recent purchases across all medications."""
    try:
        return {"success": True, "data": business_logic.get_recent_purchases(limit)}
    except Exception as e:
        return _error_response(e, "getting recent purchases")


# ==================== DASHBOARD & REPORTS API ====================

@app.get("/api/dashboard")
async def get_dashboard():
    """Dashboard stats and alert lists."""
    try:
        return {"success": True, "data": business_logic.get_dashboard_stats()}
    except Exception as e:
        return _error_response(e, "getting dashboard")


@app.get("/api/schedule/{schedule_date}")
async def get_schedule(schedule_date: str):
    """Active medications with taken flags per timing for a date."""
    try:
        return {"success": True, "data": business_logic.get_schedule_for_date(schedule_date)}
    except Exception as e:
        return _error_response(e, "getting schedule")


@app.get("/api/reports/{year}")
async def get_report(year: int):
    """Medication summary and monthly spending for a year."""
    try:
        return {"success": True, "data": business_logic.get_medication_report(year)}
    except Exception as e:
        return _error_response(e, f"getting report for {year}")


# ==================== EXPORT / IMPORT API ====================

@app.get("/api/export")
async def export_data():
    """Export the whole store as JSON."""
    try:
        return {"success": True, "data": export_logic.export_store()}
    except Exception as e:
        return _error_response(e, "exporting data")


@app.post("/api/import/validate")
async def validate_import_data(request: Request):
    """
    Validate an exported document before import (dry-run).

    Request body: the "data" object returned by /api/export
    """
    try:
        data = await request.json()
        return {"success": True, "data": export_logic.validate_import(data)}
    except Exception as e:
        return _error_response(e, "validating import")


@app.post("/api/import/execute")
async def execute_import(request: Request):
    """
    Replace all data with an exported document.

    Request body: Same as /api/import/validate
    """
    try:
        data = await request.json()
        logger.info(f"Import execute request received: {list(data.keys())}")
        return {"success": True, "data": export_logic.import_store(data)}
    except Exception as e:
        return _error_response(e, "executing import")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8009
    )
