"""Customer account tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates: customers, orders, order_items, payments, customer_checks
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ── 1. Customers ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE customers (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            phone VARCHAR(50),
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_customers_name ON customers (name);")

    # ── 2. Orders and their items ─────────────────────────────────────────
    op.execute("""
        CREATE TABLE orders (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
            title VARCHAR(255) NOT NULL,
            date DATE NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'in-progress', 'completed', 'cancelled')),
            notes TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_orders_customer_id ON orders (customer_id);")
    op.execute("CREATE INDEX ix_orders_date ON orders (date);")

    op.execute("""
        CREATE TABLE order_items (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            order_id UUID NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 1,
            unit_price NUMERIC(12, 2),
            total NUMERIC(15, 2),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_order_items_order_id ON order_items (order_id);")

    # ── 3. Payments ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE payments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            type VARCHAR(20) NOT NULL CHECK (type IN ('cash', 'check')),
            amount NUMERIC(15, 2) NOT NULL CHECK (amount > 0),
            notes TEXT,
            check_number VARCHAR(100),
            check_bank VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_payments_customer_id ON payments (customer_id);")
    op.execute(
        "CREATE INDEX ix_payments_customer_check_number ON payments (customer_id, check_number);"
    )

    # ── 4. Customer checks ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE customer_checks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
            payment_id UUID REFERENCES payments(id) ON DELETE SET NULL,
            check_number VARCHAR(100) NOT NULL,
            bank VARCHAR(255) NOT NULL,
            amount NUMERIC(15, 2) NOT NULL,
            due_date DATE NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'collected', 'returned')),
            notes TEXT,
            auto_collected BOOLEAN NOT NULL DEFAULT FALSE,
            auto_collected_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_customer_checks_customer_id ON customer_checks (customer_id);")
    op.execute("CREATE INDEX ix_customer_checks_payment_id ON customer_checks (payment_id);")
    op.execute(
        "CREATE INDEX ix_customer_checks_status_due_date ON customer_checks (status, due_date);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS customer_checks;")
    op.execute("DROP TABLE IF EXISTS payments;")
    op.execute("DROP TABLE IF EXISTS order_items;")
    op.execute("DROP TABLE IF EXISTS orders;")
    op.execute("DROP TABLE IF EXISTS customers;")
