"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None

BUDGET_OVERLAP_TRIGGERS = (
    """
    CREATE TRIGGER budgets_no_overlap_insert
    BEFORE INSERT ON budgets
    WHEN EXISTS (
        SELECT 1 FROM budgets b
        WHERE b.user_id = NEW.user_id
          AND b.category_id = NEW.category_id
          AND b.start_date <= NEW.end_date
          AND b.end_date >= NEW.start_date
    )
    BEGIN
        SELECT RAISE(ABORT, 'overlapping budget');
    END
    """,
    """
    CREATE TRIGGER budgets_no_overlap_update
    BEFORE UPDATE OF user_id, category_id, start_date, end_date ON budgets
    WHEN EXISTS (
        SELECT 1 FROM budgets b
        WHERE b.id != NEW.id
          AND b.user_id = NEW.user_id
          AND b.category_id = NEW.category_id
          AND b.start_date <= NEW.end_date
          AND b.end_date >= NEW.start_date
    )
    BEGIN
        SELECT RAISE(ABORT, 'overlapping budget');
    END
    """,
)


def upgrade():
    transaction_type = sa.Enum("INCOME", "EXPENSE", name="transactiontype")
    budget_period = sa.Enum("MONTHLY", "YEARLY", name="budgetperiod")

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("icon", sa.String(length=50)),
        sa.Column("color", sa.String(length=7)),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name", "type", name="uq_category_name_type"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("description", sa.Text()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("period", budget_period, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_budgets_amount_positive"),
        sa.CheckConstraint("end_date > start_date", name="ck_budgets_date_order"),
    )
    op.create_index(
        "ix_budgets_user_category_start",
        "budgets",
        ["user_id", "category_id", "start_date"],
    )
    if op.get_context().dialect.name == "sqlite":
        for statement in BUDGET_OVERLAP_TRIGGERS:
            op.execute(statement)


def downgrade():
    if op.get_context().dialect.name == "sqlite":
        op.execute("DROP TRIGGER IF EXISTS budgets_no_overlap_update")
        op.execute("DROP TRIGGER IF EXISTS budgets_no_overlap_insert")
    op.drop_index("ix_budgets_user_category_start", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    sa.Enum(name="budgetperiod").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="transactiontype").drop(op.get_bind(), checkfirst=True)
