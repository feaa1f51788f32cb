"""initial_schema

Revision ID: 3f7a9c1d2e4b
Revises:
Create Date: 2026-10-19 09:12:44.118203+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f7a9c1d2e4b'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PHASES = (
    "'solicitacao', 'aprovacao_a1', 'cotacao', 'aprovacao_a2', 'pedido_compra', "
    "'recebimento', 'conf_fiscal', 'conclusao_compra', 'arquivado'"
)
GATE_STATES = "'pending', 'approved_step1', 'approved_single', 'approved_final', 'rejected'"


def upgrade() -> None:
    # 1. purchase_requests (self-referencing parent/derived links)
    op.create_table('purchase_requests',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('request_number', sa.String(length=30), nullable=False),
    sa.Column('requester_id', sa.Uuid(), nullable=False),
    sa.Column('cost_center_id', sa.Uuid(), nullable=True),
    sa.Column('category', sa.String(length=50), nullable=True),
    sa.Column('urgency', sa.String(length=20), nullable=True),
    sa.Column('justification', sa.Text(), nullable=True),
    sa.Column('total_cents', sa.BigInteger(), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=True),
    sa.Column('current_phase', sa.String(length=30), nullable=False),
    sa.Column('requires_dual_approval', sa.Boolean(), nullable=False),
    sa.Column('approval_threshold_cents', sa.BigInteger(), nullable=True),
    sa.Column('a1_state', sa.String(length=20), nullable=False),
    sa.Column('a2_state', sa.String(length=20), nullable=False),
    sa.Column('a1_cycle', sa.Integer(), nullable=False),
    sa.Column('a2_cycle', sa.Integer(), nullable=False),
    sa.Column('first_approver_id', sa.Uuid(), nullable=True),
    sa.Column('first_approved_at', sa.DateTime(), nullable=True),
    sa.Column('second_approver_id', sa.Uuid(), nullable=True),
    sa.Column('second_approved_at', sa.DateTime(), nullable=True),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.Column('buyer_id', sa.Uuid(), nullable=True),
    sa.Column('parent_request_id', sa.Uuid(), nullable=True),
    sa.Column('derived_request_id', sa.Uuid(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint(f'current_phase IN ({PHASES})', name='chk_pr_phase'),
    sa.CheckConstraint(f'a1_state IN ({GATE_STATES})', name='chk_pr_a1_state'),
    sa.CheckConstraint(f'a2_state IN ({GATE_STATES})', name='chk_pr_a2_state'),
    sa.CheckConstraint('total_cents >= 0', name='chk_pr_total'),
    sa.ForeignKeyConstraint(['parent_request_id'], ['purchase_requests.id'], ),
    sa.ForeignKeyConstraint(['derived_request_id'], ['purchase_requests.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('request_number')
    )
    op.create_index('idx_pr_phase', 'purchase_requests', ['current_phase'], unique=False)
    op.create_index('idx_pr_requester', 'purchase_requests', ['requester_id'], unique=False)
    op.create_index('idx_pr_parent', 'purchase_requests', ['parent_request_id'], unique=False)

    # 2. request_items
    op.create_table('request_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('purchase_request_id', sa.Uuid(), nullable=False),
    sa.Column('line_number', sa.Integer(), nullable=False),
    sa.Column('product_code', sa.String(length=50), nullable=True),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('unit', sa.String(length=20), nullable=False),
    sa.Column('requested_quantity', sa.Integer(), nullable=False),
    sa.Column('approved_quantity', sa.Integer(), nullable=True),
    sa.Column('estimated_unit_price_cents', sa.BigInteger(), nullable=False),
    sa.Column('technical_specification', sa.Text(), nullable=True),
    sa.Column('is_transferred', sa.Boolean(), nullable=False),
    sa.Column('transferred_to_request_id', sa.Uuid(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('requested_quantity > 0', name='chk_request_item_qty'),
    sa.CheckConstraint('estimated_unit_price_cents >= 0', name='chk_request_item_price'),
    sa.CheckConstraint(
        '(is_transferred AND transferred_to_request_id IS NOT NULL) OR '
        '(NOT is_transferred AND transferred_to_request_id IS NULL)',
        name='chk_request_item_transfer_link',
    ),
    sa.ForeignKeyConstraint(['purchase_request_id'], ['purchase_requests.id'], ),
    sa.ForeignKeyConstraint(['transferred_to_request_id'], ['purchase_requests.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('purchase_request_id', 'line_number', name='uq_request_item_line')
    )
    op.create_index('idx_request_items_pr', 'request_items', ['purchase_request_id'], unique=False)

    # 3. quotations + quotation_items
    op.create_table('quotations',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('quotation_number', sa.String(length=30), nullable=False),
    sa.Column('purchase_request_id', sa.Uuid(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('deadline', sa.DateTime(), nullable=True),
    sa.Column('terms_and_conditions', sa.Text(), nullable=True),
    sa.Column('created_by', sa.Uuid(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['purchase_request_id'], ['purchase_requests.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('quotation_number')
    )
    op.create_index('idx_quotations_pr', 'quotations', ['purchase_request_id'], unique=False)

    op.create_table('quotation_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('quotation_id', sa.Uuid(), nullable=False),
    sa.Column('request_item_id', sa.Uuid(), nullable=True),
    sa.Column('item_code', sa.String(length=50), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('quantity', sa.Integer(), nullable=False),
    sa.Column('unit', sa.String(length=20), nullable=False),
    sa.Column('specifications', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('quantity > 0', name='chk_quotation_item_qty'),
    sa.ForeignKeyConstraint(['quotation_id'], ['quotations.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['request_item_id'], ['request_items.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('quotation_id', 'request_item_id', name='uq_quotation_item_request_item')
    )
    op.create_index('idx_quotation_items_quotation', 'quotation_items', ['quotation_id'], unique=False)

    # 4. supplier_quotations + items
    op.create_table('supplier_quotations',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('quotation_id', sa.Uuid(), nullable=False),
    sa.Column('supplier_id', sa.Uuid(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('total_value_cents', sa.BigInteger(), nullable=True),
    sa.Column('payment_terms', sa.Text(), nullable=True),
    sa.Column('delivery_terms', sa.Text(), nullable=True),
    sa.Column('observations', sa.Text(), nullable=True),
    sa.Column('is_chosen', sa.Boolean(), nullable=False),
    sa.Column('choice_reason', sa.Text(), nullable=True),
    sa.Column('received_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['quotation_id'], ['quotations.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('quotation_id', 'supplier_id', name='uq_supplier_quotation')
    )
    op.create_index(
        'uq_supplier_quotation_chosen', 'supplier_quotations', ['quotation_id'],
        unique=True,
        postgresql_where=sa.text('is_chosen'),
        sqlite_where=sa.text('is_chosen = 1'),
    )

    op.create_table('supplier_quotation_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('supplier_quotation_id', sa.Uuid(), nullable=False),
    sa.Column('quotation_item_id', sa.Uuid(), nullable=False),
    sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
    sa.Column('total_price_cents', sa.BigInteger(), nullable=False),
    sa.Column('is_available', sa.Boolean(), nullable=False),
    sa.Column('available_quantity', sa.Integer(), nullable=True),
    sa.Column('delivery_days', sa.Integer(), nullable=True),
    sa.Column('brand', sa.String(length=100), nullable=True),
    sa.Column('model', sa.String(length=100), nullable=True),
    sa.Column('observations', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('unit_price_cents >= 0', name='chk_sq_item_unit_price'),
    sa.CheckConstraint('total_price_cents >= 0', name='chk_sq_item_total_price'),
    sa.ForeignKeyConstraint(['supplier_quotation_id'], ['supplier_quotations.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['quotation_item_id'], ['quotation_items.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('supplier_quotation_id', 'quotation_item_id', name='uq_supplier_quotation_item')
    )
    op.create_index('idx_sq_items_sq', 'supplier_quotation_items', ['supplier_quotation_id'], unique=False)

    # 5. purchase_orders + items
    op.create_table('purchase_orders',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('order_number', sa.String(length=30), nullable=False),
    sa.Column('purchase_request_id', sa.Uuid(), nullable=False),
    sa.Column('supplier_id', sa.Uuid(), nullable=False),
    sa.Column('quotation_id', sa.Uuid(), nullable=False),
    sa.Column('supplier_quotation_id', sa.Uuid(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('total_value_cents', sa.BigInteger(), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=True),
    sa.Column('observations', sa.Text(), nullable=True),
    sa.Column('created_by', sa.Uuid(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['purchase_request_id'], ['purchase_requests.id'], ),
    sa.ForeignKeyConstraint(['quotation_id'], ['quotations.id'], ),
    sa.ForeignKeyConstraint(['supplier_quotation_id'], ['supplier_quotations.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('order_number'),
    sa.UniqueConstraint('purchase_request_id')
    )
    op.create_index('idx_po_supplier', 'purchase_orders', ['supplier_id'], unique=False)
    op.create_index('idx_po_status', 'purchase_orders', ['status'], unique=False)

    op.create_table('purchase_order_items',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('purchase_order_id', sa.Uuid(), nullable=False),
    sa.Column('request_item_id', sa.Uuid(), nullable=False),
    sa.Column('supplier_quotation_item_id', sa.Uuid(), nullable=False),
    sa.Column('item_code', sa.String(length=50), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('quantity', sa.Integer(), nullable=False),
    sa.Column('unit', sa.String(length=20), nullable=False),
    sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
    sa.Column('total_price_cents', sa.BigInteger(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('quantity > 0', name='chk_po_item_qty'),
    sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['request_item_id'], ['request_items.id'], ),
    sa.ForeignKeyConstraint(['supplier_quotation_item_id'], ['supplier_quotation_items.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_po_items_po', 'purchase_order_items', ['purchase_order_id'], unique=False)

    # 6. approval ledger + configuration
    op.create_table('approval_history',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('purchase_request_id', sa.Uuid(), nullable=False),
    sa.Column('approver_type', sa.String(length=2), nullable=False),
    sa.Column('approver_id', sa.Uuid(), nullable=False),
    sa.Column('approved', sa.Boolean(), nullable=False),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.Column('rejection_action', sa.String(length=20), nullable=True),
    sa.Column('approval_step', sa.Integer(), nullable=False),
    sa.Column('approval_cycle', sa.Integer(), nullable=False),
    sa.Column('requires_dual_approval', sa.Boolean(), nullable=False),
    sa.Column('approval_value_cents', sa.BigInteger(), nullable=False),
    sa.Column('threshold_cents', sa.BigInteger(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.CheckConstraint("approver_type IN ('A1', 'A2')", name='chk_approval_type'),
    sa.CheckConstraint('approval_step IN (1, 2)', name='chk_approval_step'),
    sa.ForeignKeyConstraint(['purchase_request_id'], ['purchase_requests.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_approval_history_pr', 'approval_history', ['purchase_request_id', 'approver_type'], unique=False)
    op.create_index('idx_approval_history_approver', 'approval_history', ['approver_id'], unique=False)

    op.create_table('approval_configurations',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('value_threshold_cents', sa.BigInteger(), nullable=False),
    sa.Column('effective_date', sa.DateTime(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('reason', sa.Text(), nullable=False),
    sa.Column('created_by', sa.Uuid(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('value_threshold_cents > 0', name='chk_approval_config_threshold'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_approval_config_active', 'approval_configurations', ['is_active', 'effective_date'], unique=False)

    # 7. audit_logs
    op.create_table('audit_logs',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('actor_id', sa.Uuid(), nullable=True),
    sa.Column('actor_email', sa.String(length=255), nullable=True),
    sa.Column('action', sa.String(length=100), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.Uuid(), nullable=False),
    sa.Column('before_state', sa.JSON(), nullable=True),
    sa.Column('after_state', sa.JSON(), nullable=True),
    sa.Column('changed_fields', sa.JSON(), nullable=True),
    sa.Column('request_id', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_actor', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('idx_audit_created', 'audit_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('approval_configurations')
    op.drop_table('approval_history')
    op.drop_table('purchase_order_items')
    op.drop_table('purchase_orders')
    op.drop_table('supplier_quotation_items')
    op.drop_table('supplier_quotations')
    op.drop_table('quotation_items')
    op.drop_table('quotations')
    op.drop_table('request_items')
    op.drop_table('purchase_requests')
