"""Boleto core schema (SQL-only).

Revision ID: 001_boletos_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "001_boletos_schema"
down_revision = None
branch_labels = None
depends_on = None

SQL_FILE = Path(__file__).resolve().parents[1] / "sql" / "001_boletos.sql"


def upgrade() -> None:
    # exec_driver_sql runs the file as-is (DO $$ ... $$ blocks included)
    op.get_bind().exec_driver_sql(SQL_FILE.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.get_bind().exec_driver_sql(
        """
        DROP TABLE IF EXISTS fatura_boletos;
        DROP TABLE IF EXISTS financial_transactions;
        DROP TABLE IF EXISTS fatura_lancamentos;
        DROP TABLE IF EXISTS faturas;
        DROP TABLE IF EXISTS contratos;
        DROP TABLE IF EXISTS pessoas;
        DROP TABLE IF EXISTS bank_api_configs;
        DROP TYPE IF EXISTS boleto_status;
        """
    )
