# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with DocVault Integration.

A small shop backend keeping users and orders in a DocVault SQLite store,
with full backups e-mailed to an operator and restore from an uploaded file.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    DOCVAULT_OPERATOR_ADDRESS: Where backups are sent
    DOCVAULT_ADMIN_API_KEY: API key for admin endpoints
    DOCVAULT_RESTORE_SECRET: Secret re-entered to confirm a restore
    SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM: Mail transport
    ENABLE_AUTOBACKUP, AUTOBACKUP_TIME: Periodic backups every N days
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from docvault import create_config, create_config_from_env
from docvault.exceptions import ConfigurationError
from docvault.integrations.fastapi import get_docvault_state, setup_docvault_plugin

RECORD_SETS = ("users", "orders")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # DocVault is already running here; make sure our record sets exist
    driver = get_docvault_state(app)["driver"]
    for name in RECORD_SETS:
        await driver.register_set(name)
    yield


app = FastAPI(
    title="Shop with DocVault",
    description="Example application demonstrating full backup and restore",
    version="1.0.0",
    lifespan=lifespan,
)


def load_config():
    """Read configuration from the environment, falling back to a local dev setup."""
    try:
        return create_config_from_env()
    except ConfigurationError as e:
        print(f"Failed to create DocVault config: {e}")
        return create_config(
            operator_address="ops@localhost.localdomain",
            database_path="./shop.db",
            backup_storage_path="./uploads/backups",
        )


config = load_config()

# Setup DocVault plugin
setup_docvault_plugin(app, config)

# Link-delivered backups are fetched from here
config.backup_storage_path.mkdir(parents=True, exist_ok=True)
app.mount(
    config.public_backup_route,
    StaticFiles(directory=config.backup_storage_path),
    name="backups",
)


# ============================================================================
# Application Routes
# ============================================================================


class User(BaseModel):
    email: str
    name: str
    password: str


class Order(BaseModel):
    user_id: str
    total: float


@app.get("/")
async def root():
    return {
        "message": "Welcome to the Shop with DocVault",
        "docs": "/docs",
        "docvault_admin": "/admin/backup/status",
    }


@app.post("/users")
async def create_user(user: User) -> dict:
    # A real app would hash the password; backups keep whatever is stored
    driver = get_docvault_state(app)["driver"]
    user_id = await driver.insert_one("users", user.model_dump())
    return {"_id": user_id}


@app.post("/orders")
async def create_order(order: Order) -> dict:
    driver = get_docvault_state(app)["driver"]
    order_id = await driver.insert_one("orders", order.model_dump())
    return {"_id": order_id}


@app.get("/orders")
async def recent_orders(limit: int = 20) -> list:
    driver = get_docvault_state(app)["driver"]
    return await driver.read_recent("orders", limit)


# ============================================================================
# DocVault Admin Endpoints (auto-registered by plugin)
# ============================================================================
#
# POST /admin/backup/run      - Full backup, e-mailed (?background=true for 202)
# POST /admin/backup/restore  - Restore from an uploaded file (form: backup, password)
# POST /admin/backup/report   - E-mail a redacted summary report
# GET  /admin/backup/status   - Last backup and configuration summary
# GET  /admin/backup/runs     - Backup, restore and report history
#
# All admin endpoints require: Authorization: Bearer <DOCVAULT_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
