"""initial pipeline schema

Revision ID: 1c4e7a9b2d10
Revises:
Create Date: 2026-03-02 10:14:21.518204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1c4e7a9b2d10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    ]


def upgrade():
    op.create_table('users',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('password_hash', sa.String(length=255), nullable=False),
    sa.Column('full_name', sa.String(length=255), nullable=True),
    sa.Column('role', sa.String(length=50), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_table('prospects',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('restaurant_name', sa.String(length=255), nullable=False),
    sa.Column('pincode', sa.String(length=20), nullable=False),
    sa.Column('locality', sa.String(length=255), nullable=False),
    sa.Column('location', sa.String(length=500), nullable=True),
    sa.Column('source', sa.String(length=100), nullable=True),
    sa.Column('cuisine_type', sa.String(length=100), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('tag', sa.String(length=50), nullable=True),
    sa.Column('recall_date', sa.Date(), nullable=True),
    sa.Column('mapped_to', sa.String(length=255), nullable=True),
    sa.Column('created_by', sa.String(length=255), nullable=True),
    sa.Column('geo_lat', sa.Float(), nullable=True),
    sa.Column('geo_lng', sa.Float(), nullable=True),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_prospects_pincode', 'prospects', ['pincode'], unique=False)

    op.create_table('leads',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('prospect_id', sa.String(length=36), nullable=True),
    sa.Column('client_name', sa.String(length=255), nullable=False),
    sa.Column('pincode', sa.String(length=20), nullable=False),
    sa.Column('locality', sa.String(length=255), nullable=True),
    sa.Column('outlet_address', sa.String(length=500), nullable=True),
    sa.Column('contact_number', sa.String(length=50), nullable=True),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('gst_id', sa.String(length=50), nullable=True),
    sa.Column('avocado_consumption', sa.String(length=100), nullable=True),
    sa.Column('purchase_manager_name', sa.String(length=255), nullable=True),
    sa.Column('pm_contact', sa.String(length=50), nullable=True),
    sa.Column('outlet_photo_url', sa.String(length=500), nullable=True),
    sa.Column('appointment_date', sa.Date(), nullable=True),
    sa.Column('appointment_time', sa.String(length=50), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('remarks', sa.Text(), nullable=True),
    sa.Column('call_count', sa.Integer(), nullable=False),
    sa.Column('visit_count', sa.Integer(), nullable=False),
    sa.Column('last_activity_date', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_by', sa.String(length=255), nullable=True),
    sa.Column('geo_lat', sa.Float(), nullable=True),
    sa.Column('geo_lng', sa.Float(), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['prospect_id'], ['prospects.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_leads_prospect_id', 'leads', ['prospect_id'], unique=False)
    op.create_index('ix_leads_pincode', 'leads', ['pincode'], unique=False)

    op.create_table('sample_orders',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('lead_id', sa.String(length=36), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('remarks', sa.Text(), nullable=True),
    sa.Column('visit_date', sa.Date(), nullable=True),
    sa.Column('delivery_address', sa.String(length=500), nullable=True),
    sa.Column('delivery_date', sa.Date(), nullable=True),
    sa.Column('delivery_slot', sa.String(length=100), nullable=True),
    sa.Column('sample_qty_units', sa.Integer(), nullable=True),
    sa.Column('demand_per_week_kg', sa.Float(), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['lead_id'], ['leads.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sample_orders_lead_id', 'sample_orders', ['lead_id'], unique=False)

    op.create_table('agreements',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('sample_order_id', sa.String(length=36), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('esign_status', sa.String(length=50), nullable=True),
    sa.Column('quality_feedback', sa.Boolean(), nullable=True),
    sa.Column('quality_remarks', sa.Text(), nullable=True),
    sa.Column('pricing_type', sa.String(length=50), nullable=True),
    sa.Column('agreed_price_per_kg', sa.Float(), nullable=True),
    sa.Column('payment_type', sa.String(length=50), nullable=True),
    sa.Column('credit_days', sa.Integer(), nullable=True),
    sa.Column('expected_weekly_volume_kg', sa.Float(), nullable=True),
    sa.Column('expected_first_order_date', sa.Date(), nullable=True),
    sa.Column('delivery_slot', sa.String(length=100), nullable=True),
    sa.Column('distribution_partner', sa.String(length=255), nullable=True),
    sa.Column('mail_id', sa.String(length=255), nullable=True),
    sa.Column('remarks', sa.Text(), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['sample_order_id'], ['sample_orders.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_agreements_sample_order_id', 'agreements', ['sample_order_id'], unique=False)

    op.create_table('activity_logs',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.String(length=36), nullable=False),
    sa.Column('action', sa.String(length=255), nullable=False),
    sa.Column('user_email', sa.String(length=255), nullable=True),
    sa.Column('user_role', sa.String(length=50), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('before_state', sa.String(length=50), nullable=True),
    sa.Column('after_state', sa.String(length=50), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_activity_logs_entity_id', 'activity_logs', ['entity_id'], unique=False)

    op.create_table('pincode_persona_map',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('pincode', sa.String(length=20), nullable=False),
    sa.Column('locality', sa.String(length=255), nullable=False),
    sa.Column('role', sa.String(length=50), nullable=False),
    sa.Column('user_email', sa.String(length=255), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_pincode_persona_map_pincode', 'pincode_persona_map', ['pincode'], unique=False)
    op.create_index('ix_pincode_persona_map_user_email', 'pincode_persona_map', ['user_email'], unique=False)

    op.create_table('drop_reasons',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('reason_text', sa.String(length=255), nullable=False),
    sa.Column('step_number', sa.Integer(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('sku_mapping',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('sku_name', sa.String(length=255), nullable=False),
    sa.Column('grammage', sa.Integer(), nullable=False),
    sa.Column('lot_size', sa.Integer(), nullable=True),
    sa.Column('box_count', sa.Integer(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('stage_mapping',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('stage_number', sa.Integer(), nullable=False),
    sa.Column('stage_description', sa.String(length=255), nullable=False),
    sa.Column('consumption_days_min', sa.Integer(), nullable=False),
    sa.Column('consumption_days_max', sa.Integer(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )


def downgrade():
    op.drop_table('stage_mapping')
    op.drop_table('sku_mapping')
    op.drop_table('drop_reasons')
    op.drop_index('ix_pincode_persona_map_user_email', table_name='pincode_persona_map')
    op.drop_index('ix_pincode_persona_map_pincode', table_name='pincode_persona_map')
    op.drop_table('pincode_persona_map')
    op.drop_index('ix_activity_logs_entity_id', table_name='activity_logs')
    op.drop_table('activity_logs')
    op.drop_index('ix_agreements_sample_order_id', table_name='agreements')
    op.drop_table('agreements')
    op.drop_index('ix_sample_orders_lead_id', table_name='sample_orders')
    op.drop_table('sample_orders')
    op.drop_index('ix_leads_pincode', table_name='leads')
    op.drop_index('ix_leads_prospect_id', table_name='leads')
    op.drop_table('leads')
    op.drop_index('ix_prospects_pincode', table_name='prospects')
    op.drop_table('prospects')
    op.drop_table('users')
