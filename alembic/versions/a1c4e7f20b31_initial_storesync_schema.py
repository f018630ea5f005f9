"""initial_storesync_schema

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-10-17

Tenant-scoped ingestion tables. Every natural key leads with org_id so the
upsert store can target it with ON CONFLICT.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f20b31'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ingestion, catalog, settings and audit tables."""
    op.create_table(
        'ad_performance',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=False, index=True),
        sa.Column('platform', sa.String(), nullable=False),

        # Natural key
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('campaign', sa.String(), nullable=False, server_default=''),
        sa.Column('adset', sa.String(), nullable=False, server_default=''),
        sa.Column('ad', sa.String(), nullable=False, server_default=''),
        sa.Column('campaign_id', sa.String(), nullable=True),
        sa.Column('utm_campaign', sa.String(), nullable=True),

        # Delivery and conversions
        sa.Column('spend', sa.Numeric(12, 2)),
        sa.Column('impressions', sa.Integer()),
        sa.Column('reach', sa.Integer()),
        sa.Column('frequency', sa.Float()),
        sa.Column('clicks', sa.Integer()),
        sa.Column('purchases', sa.Integer()),
        sa.Column('purchase_value', sa.Numeric(12, 2)),

        # Provider-reported ratios
        sa.Column('cpc', sa.Float()),
        sa.Column('cpm', sa.Float()),
        sa.Column('ctr', sa.Float()),
        sa.Column('roas', sa.Float()),
        sa.Column('cost_per_purchase', sa.Float()),

        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('org_id', 'platform', 'date', 'campaign', 'adset', 'ad',
                            name='uq_ad_performance_natural_key'),
    )
    op.create_index('ix_ad_performance_org_date', 'ad_performance', ['org_id', 'date'])

    op.create_table(
        'inventory_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=False, index=True),
        sa.Column('snapshot_date', sa.Date(), nullable=False, index=True),
        sa.Column('sku', sa.String(), nullable=False, index=True),
        sa.Column('product_name', sa.String(), nullable=True),
        sa.Column('fulfillable_quantity', sa.Integer()),
        sa.Column('onhand_quantity', sa.Integer()),
        sa.Column('committed_quantity', sa.Integer()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('org_id', 'snapshot_date', 'sku', name='uq_inventory_snapshot_natural_key'),
    )

    op.create_table(
        'daily_analytics',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False, index=True),

        # Traffic
        sa.Column('unique_visitors', sa.Integer()),
        sa.Column('total_sessions', sa.Integer()),
        sa.Column('pageviews', sa.Integer()),
        sa.Column('bounce_rate', sa.Float()),
        sa.Column('avg_session_duration', sa.Float()),
        sa.Column('mobile_sessions', sa.Integer()),
        sa.Column('desktop_sessions', sa.Integer()),
        sa.Column('top_country', sa.String(), nullable=True),

        # Channels
        sa.Column('direct_sessions', sa.Integer()),
        sa.Column('organic_sessions', sa.Integer()),
        sa.Column('paid_sessions', sa.Integer()),
        sa.Column('social_sessions', sa.Integer()),

        # Funnel
        sa.Column('product_views', sa.Integer()),
        sa.Column('add_to_cart', sa.Integer()),
        sa.Column('checkout_started', sa.Integer()),
        sa.Column('purchases', sa.Integer()),
        sa.Column('conversion_rate', sa.Float()),

        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('org_id', 'date', name='uq_daily_analytics_natural_key'),
    )

    op.create_table(
        'shopify_orders',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=False, index=True),
        sa.Column('shopify_id', sa.String(), nullable=False),
        sa.Column('order_number', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('fulfillment_status', sa.String()),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2)),
        sa.Column('shipping', sa.Numeric(12, 2)),
        sa.Column('tax', sa.Numeric(12, 2)),
        sa.Column('total', sa.Numeric(12, 2)),
        sa.Column('discount_codes', sa.Text(), nullable=True),
        sa.Column('skus', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer()),
        sa.Column('tracking_number', sa.String(), nullable=True),
        sa.Column('tags', sa.Text(), nullable=True),
        sa.Column('is_repeat_customer', sa.Boolean()),
        sa.Column('synced_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('org_id', 'shopify_id', name='uq_shopify_orders_natural_key'),
    )
    op.create_index('ix_shopify_orders_org_email', 'shopify_orders', ['org_id', 'email'])
    op.create_index('ix_shopify_orders_org_created', 'shopify_orders', ['org_id', 'created_at'])

    op.create_table(
        'shopify_customers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=False, index=True),
        sa.Column('customer_key', sa.String(), nullable=False),
        sa.Column('shopify_customer_id', sa.String(), nullable=True, index=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('accepts_marketing', sa.Boolean()),
        sa.Column('orders_count', sa.Integer()),
        sa.Column('total_spent', sa.Numeric(12, 2)),
        sa.Column('tags', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('last_order_at', sa.DateTime(), nullable=True),
        sa.Column('synced_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('org_id', 'customer_key', name='uq_shopify_customers_natural_key'),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=False, index=True),
        sa.Column('sku', sa.String(), nullable=False),

        # Catalog
        sa.Column('product_name', sa.String(), nullable=True),
        sa.Column('brand', sa.String(), nullable=True),
        sa.Column('unit_barcode', sa.String(), nullable=True),
        sa.Column('asin', sa.String(), nullable=True),
        sa.Column('shippo_sku', sa.String(), nullable=True),

        # Pack logistics
        sa.Column('pieces_per_pack', sa.Integer(), nullable=True),
        sa.Column('pack_weight_kg', sa.Numeric(12, 4), nullable=True),
        sa.Column('pack_length_cm', sa.Numeric(12, 2), nullable=True),
        sa.Column('pack_width_cm', sa.Numeric(12, 2), nullable=True),
        sa.Column('pack_height_cm', sa.Numeric(12, 2), nullable=True),
        sa.Column('unit_cbm', sa.Numeric(12, 6), nullable=True),
        sa.Column('dimensional_weight', sa.Numeric(12, 4), nullable=True),

        # Pricing
        sa.Column('unit_price_usd', sa.Numeric(12, 4), nullable=True),
        sa.Column('unit_price_gbp', sa.Numeric(12, 4), nullable=True),
        sa.Column('pack_cost_gbp', sa.Numeric(12, 4), nullable=True),
        sa.Column('landed_cost', sa.Numeric(12, 4), nullable=True),
        sa.Column('unit_lcogs', sa.Numeric(12, 4), nullable=True),
        sa.Column('dtc_rrp', sa.Numeric(12, 2), nullable=True),
        sa.Column('pp_unit', sa.Numeric(12, 4), nullable=True),
        sa.Column('dtc_rrp_ex_vat', sa.Numeric(12, 2), nullable=True),

        # Master carton
        sa.Column('carton_barcode', sa.String(), nullable=True),
        sa.Column('units_per_master_carton', sa.Integer(), nullable=True),
        sa.Column('pieces_per_master_carton', sa.Integer(), nullable=True),
        sa.Column('gross_weight_kg', sa.Numeric(12, 4), nullable=True),
        sa.Column('carton_width_cm', sa.Numeric(12, 2), nullable=True),
        sa.Column('carton_length_cm', sa.Numeric(12, 2), nullable=True),
        sa.Column('carton_height_cm', sa.Numeric(12, 2), nullable=True),
        sa.Column('carton_cbm', sa.Numeric(12, 6), nullable=True),

        sa.Column('active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('org_id', 'sku', name='uq_products_natural_key'),
    )

    op.create_table(
        'integration_settings',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=False, index=True),
        sa.Column('provider', sa.String(), nullable=False, index=True),
        sa.Column('enabled', sa.Boolean()),
        sa.Column('config', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('org_id', 'provider', name='uq_integration_settings_org_provider'),
    )

    # Append-only audit log
    op.create_table(
        'sync_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('org_id', sa.String(), nullable=True),
        sa.Column('source', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('synced_at', sa.DateTime(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
    )
    op.create_index('ix_sync_logs_org_source_synced', 'sync_logs', ['org_id', 'source', 'synced_at'])


def downgrade() -> None:
    """Drop every storesync table."""
    op.drop_index('ix_sync_logs_org_source_synced', table_name='sync_logs')
    op.drop_table('sync_logs')
    op.drop_table('integration_settings')
    op.drop_table('products')
    op.drop_table('shopify_customers')
    op.drop_index('ix_shopify_orders_org_created', table_name='shopify_orders')
    op.drop_index('ix_shopify_orders_org_email', table_name='shopify_orders')
    op.drop_table('shopify_orders')
    op.drop_table('daily_analytics')
    op.drop_table('inventory_snapshots')
    op.drop_index('ix_ad_performance_org_date', table_name='ad_performance')
    op.drop_table('ad_performance')
