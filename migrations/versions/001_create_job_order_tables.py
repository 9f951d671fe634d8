"""
Alembic migration: Create job order, payment ledger and approval tables.

Creates the job_orders table with its status enums, money columns and the
JSONB payload for nested services, roadmap, documents, billing and exit
permit; the job_order_payments ledger; and service_approval_requests keyed
by the deterministic APR-{job_order_id}-{service_id} id.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

WORK_STATUSES = ('DRAFT', 'OPEN', 'IN_PROGRESS', 'READY', 'COMPLETED', 'CANCELLED')
PAYMENT_STATUSES = ('UNPAID', 'PARTIAL', 'PAID')
EXIT_PERMIT_STATUSES = ('APPROVED', 'PENDING', 'REJECTED', 'NOT_REQUIRED')
APPROVAL_STATUSES = ('PENDING', 'APPROVED', 'REJECTED')


def _money(name: str, comment: str) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=12, scale=2),
        nullable=False,
        server_default=sa.text('0'),
        comment=comment,
    )


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
            comment='Timestamp when record was last updated',
        ),
        sa.Column(
            'created_by',
            sa.String(length=255),
            nullable=True,
            comment='Actor identity who created the record',
        ),
        sa.Column(
            'updated_by',
            sa.String(length=255),
            nullable=True,
            comment='Actor identity who last updated the record',
        ),
    ]


def upgrade() -> None:
    """
    Upgrade database schema to add the job order engine tables.

    Money columns carry non-negative check constraints; the payment ledger
    only accepts positive amounts since refunds shrink or delete rows.
    """
    bind = op.get_bind()
    postgresql.ENUM(*WORK_STATUSES, name='job_order_status').create(bind, checkfirst=True)
    postgresql.ENUM(*PAYMENT_STATUSES, name='job_order_payment_status').create(
        bind, checkfirst=True
    )
    postgresql.ENUM(*EXIT_PERMIT_STATUSES, name='exit_permit_status').create(
        bind, checkfirst=True
    )
    postgresql.ENUM(*APPROVAL_STATUSES, name='approval_status').create(bind, checkfirst=True)

    op.create_table(
        'job_orders',
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Unique identifier for the record',
        ),
        sa.Column(
            'order_number',
            sa.String(length=50),
            nullable=False,
            comment='Human-readable order number',
        ),
        sa.Column('order_type', sa.String(length=50), nullable=True),
        sa.Column('customer_id', sa.String(length=100), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=30), nullable=True),
        sa.Column('vehicle_id', sa.String(length=100), nullable=True),
        sa.Column(
            'plate_number',
            sa.String(length=30),
            nullable=True,
            comment='Vehicle plate number for history lookups',
        ),
        sa.Column(
            'status',
            postgresql.ENUM(*WORK_STATUSES, name='job_order_status', create_type=False),
            nullable=False,
            server_default=sa.text("'OPEN'"),
            comment='Persisted work status',
        ),
        sa.Column('work_status_label', sa.String(length=50), nullable=True),
        sa.Column(
            'payment_status',
            postgresql.ENUM(
                *PAYMENT_STATUSES, name='job_order_payment_status', create_type=False
            ),
            nullable=False,
            server_default=sa.text("'UNPAID'"),
            comment='Persisted payment status',
        ),
        sa.Column('payment_status_label', sa.String(length=50), nullable=True),
        _money('total_amount', 'Sum of billable services'),
        _money('discount', 'Discount applied to the order'),
        _money('net_amount', 'Total minus discount'),
        _money('amount_paid', 'Sum of recorded payments'),
        _money('balance_due', 'Outstanding balance'),
        sa.Column(
            'exit_permit_status',
            postgresql.ENUM(
                *EXIT_PERMIT_STATUSES, name='exit_permit_status', create_type=False
            ),
            nullable=False,
            server_default=sa.text("'NOT_REQUIRED'"),
        ),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column(
            'data_json',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment='Nested services, roadmap, documents, billing and exit permit',
        ),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_job_orders'),
        sa.UniqueConstraint('order_number', name='uq_job_orders_order_number'),
        sa.CheckConstraint('total_amount >= 0', name='ck_job_orders_total_non_negative'),
        sa.CheckConstraint('discount >= 0', name='ck_job_orders_discount_non_negative'),
        sa.CheckConstraint('discount <= total_amount', name='ck_job_orders_discount_le_total'),
        sa.CheckConstraint('net_amount >= 0', name='ck_job_orders_net_non_negative'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_job_orders_paid_non_negative'),
        sa.CheckConstraint('balance_due >= 0', name='ck_job_orders_balance_non_negative'),
        comment='Vehicle service job orders',
    )

    op.create_index('ix_job_orders_status', 'job_orders', ['status'])
    op.create_index('ix_job_orders_plate_number', 'job_orders', ['plate_number'])
    op.create_index('ix_job_orders_status_updated', 'job_orders', ['status', 'updated_at'])

    op.create_table(
        'job_order_payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            'job_order_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Owning job order',
        ),
        sa.Column(
            'amount',
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            comment='Payment amount',
        ),
        sa.Column('method', sa.String(length=50), nullable=True),
        sa.Column('reference', sa.String(length=255), nullable=True),
        sa.Column(
            'paid_at',
            sa.DateTime(timezone=True),
            nullable=False,
            comment='When the payment was taken',
        ),
        sa.Column('notes', sa.Text(), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_job_order_payments'),
        sa.ForeignKeyConstraint(
            ['job_order_id'],
            ['job_orders.id'],
            name='fk_job_order_payments_job_order_id',
            ondelete='RESTRICT',
        ),
        sa.CheckConstraint('amount > 0', name='ck_job_order_payments_amount_positive'),
        comment='Payments recorded against job orders',
    )

    op.create_index(
        'ix_job_order_payments_job_order',
        'job_order_payments',
        ['job_order_id'],
    )
    op.create_index(
        'ix_job_order_payments_job_order_paid_at',
        'job_order_payments',
        ['job_order_id', 'paid_at'],
    )

    op.create_table(
        'service_approval_requests',
        sa.Column('id', sa.String(length=180), nullable=False),
        sa.Column('job_order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column('service_id', sa.String(length=255), nullable=False),
        sa.Column('service_name', sa.String(length=200), nullable=False),
        sa.Column(
            'price',
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            server_default=sa.text('0'),
        ),
        sa.Column('requested_action', sa.String(length=50), nullable=False),
        sa.Column('requested_by', sa.String(length=255), nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            'status',
            postgresql.ENUM(*APPROVAL_STATUSES, name='approval_status', create_type=False),
            nullable=False,
            server_default=sa.text("'PENDING'"),
        ),
        sa.Column('decided_by', sa.String(length=255), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_note', sa.Text(), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.PrimaryKeyConstraint('id', name='pk_service_approval_requests'),
        sa.ForeignKeyConstraint(
            ['job_order_id'],
            ['job_orders.id'],
            name='fk_service_approval_requests_job_order_id',
            ondelete='RESTRICT',
        ),
        comment='Approval requests for disruptive service line changes',
    )

    op.create_index(
        'ix_service_approval_requests_status_requested',
        'service_approval_requests',
        ['status', 'requested_at'],
    )
    op.create_index(
        'ix_service_approval_requests_job_order',
        'service_approval_requests',
        ['job_order_id'],
    )


def downgrade() -> None:
    """
    Downgrade database schema by removing the job order engine tables.

    Drops tables in dependency order, then the enum types.
    """
    op.drop_index('ix_service_approval_requests_job_order', table_name='service_approval_requests')
    op.drop_index(
        'ix_service_approval_requests_status_requested',
        table_name='service_approval_requests',
    )
    op.drop_table('service_approval_requests')

    op.drop_index('ix_job_order_payments_job_order_paid_at', table_name='job_order_payments')
    op.drop_index('ix_job_order_payments_job_order', table_name='job_order_payments')
    op.drop_table('job_order_payments')

    op.drop_index('ix_job_orders_status_updated', table_name='job_orders')
    op.drop_index('ix_job_orders_plate_number', table_name='job_orders')
    op.drop_index('ix_job_orders_status', table_name='job_orders')
    op.drop_table('job_orders')

    op.execute('DROP TYPE IF EXISTS approval_status')
    op.execute('DROP TYPE IF EXISTS exit_permit_status')
    op.execute('DROP TYPE IF EXISTS job_order_payment_status')
    op.execute('DROP TYPE IF EXISTS job_order_status')
