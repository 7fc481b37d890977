# =====================================================
# app.py
# =====================================================
import os

# Force unbuffered output (hosted platforms need this for real-time logs)
os.environ["PYTHONUNBUFFERED"] = "1"

from fastapi import FastAPI
from fastapi.responses import JSONResponse

# Local imports
from logging_setup import logger
from logger import register_error_handlers
from config import AUTO_CREATE_TABLES
import db
from handlers import wallet, quizzes, admin

# -------------------------------------------------
# Initialize FastAPI
# -------------------------------------------------
app = FastAPI(title="Think2Win")

register_error_handlers(app)
app.include_router(wallet.router)
app.include_router(quizzes.router)
app.include_router(admin.router)

# -------------------------------------------------
# Root route
# -------------------------------------------------
@app.get("/")
@app.head("/")
async def root():
    return {
        "status": "ok",
        "message": "Think2Win API is running ✅",
        "health": "Check /health for database status",
    }


@app.get("/health")
async def health():
    try:
        await db.test_connection()
    except Exception:
        return JSONResponse({"status": "degraded", "database": "unreachable"}, status_code=503)
    return {"status": "ok", "database": "ok"}

# -------------------------------------------------
# Startup / shutdown events
# -------------------------------------------------
@app.on_event("startup")
async def on_startup():
    logger.info("🚀 Starting up Think2Win...")
    if AUTO_CREATE_TABLES:
        await db.init_db()


@app.on_event("shutdown")
async def on_shutdown():
    await db.engine.dispose()
    logger.info("🛑 Database engine disposed.")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
