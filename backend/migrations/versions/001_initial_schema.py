"""Initial monetization schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='user'),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('paddle_customer_id', sa.String(length=255), nullable=True),
        sa.Column('subscription_status', sa.String(length=50), nullable=True),
        sa.Column('subscription_plan', sa.String(length=50), nullable=True),
        sa.Column('subscription_provider', sa.String(length=50), nullable=True),
        sa.Column('subscription_external_id', sa.String(length=255), nullable=True),
        sa.Column('subscription_is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('subscription_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('referral_code', sa.String(length=64), nullable=True),
        sa.Column('affiliate_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('affiliate_conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('affiliate_earnings', sa.Numeric(12, 2), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('referral_code', name='uq_users_referral_code'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_stripe_customer_id', 'users', ['stripe_customer_id'])
    op.create_index('ix_users_paddle_customer_id', 'users', ['paddle_customer_id'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('plan', sa.String(length=50), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_event_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_external_id', 'subscriptions', ['external_id'], unique=True)
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    # At most one active subscription per user
    op.create_index(
        'uq_subscriptions_active_user', 'subscriptions', ['user_id'],
        unique=True, postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        'billing_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('reference', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('subscription_id', 'reference', name='uq_billing_records_subscription_reference'),
    )
    op.create_index('ix_billing_records_subscription_id', 'billing_records', ['subscription_id'])
    op.create_index('ix_billing_records_occurred_at', 'billing_records', ['occurred_at'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('outcome', sa.String(length=50), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event'),
    )
    op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])
    op.create_index('ix_webhook_events_external_id', 'webhook_events', ['external_id'])

    op.create_table(
        'blog_posts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('author_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('affiliate_products', sa.JSON(), nullable=False),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_visitors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('average_time_on_page', sa.Float(), nullable=False, server_default='0'),
        sa.Column('bounces', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('affiliate_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('analytics_updated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_blog_posts_slug', 'blog_posts', ['slug'], unique=True)
    op.create_index('ix_blog_posts_author_id', 'blog_posts', ['author_id'])
    op.create_index('ix_blog_posts_status', 'blog_posts', ['status'])
    op.create_index('ix_blog_posts_analytics_updated_at', 'blog_posts', ['analytics_updated_at'])

    op.create_table(
        'affiliate_clicks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('blog_post_id', sa.Integer(), sa.ForeignKey('blog_posts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tool_name', sa.String(length=255), nullable=False),
        sa.Column('affiliate_network', sa.String(length=50), nullable=False),
        sa.Column('affiliate_id', sa.String(length=255), nullable=False),
        sa.Column('commission', sa.Numeric(5, 2), nullable=False),
        sa.Column('ip', sa.String(length=64), nullable=False),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('referrer', sa.String(length=1024), nullable=True),
        sa.Column('utm_source', sa.String(length=255), nullable=True),
        sa.Column('utm_medium', sa.String(length=255), nullable=True),
        sa.Column('utm_campaign', sa.String(length=255), nullable=True),
        sa.Column('converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conversion_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('commission_earned', sa.Numeric(12, 2), nullable=True),
        sa.Column('clicked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_affiliate_clicks_user_id', 'affiliate_clicks', ['user_id'])
    op.create_index('ix_affiliate_clicks_blog_post_id', 'affiliate_clicks', ['blog_post_id'])
    op.create_index('ix_affiliate_clicks_clicked_at', 'affiliate_clicks', ['clicked_at'])
    op.create_index('ix_affiliate_clicks_converted_at', 'affiliate_clicks', ['converted_at'])
    op.create_index('ix_affiliate_clicks_dedup', 'affiliate_clicks', ['ip', 'tool_name', 'clicked_at'])

    op.create_table(
        'analytics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('revenue_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('revenue_affiliate', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('revenue_subscriptions', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('revenue_sponsored', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('page_views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_visitors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('average_session_duration', sa.Float(), nullable=False, server_default='0'),
        sa.Column('bounce_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('affiliate_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('affiliate_conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subscription_signups', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_posts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('premium_posts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('top_performing_posts', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_analytics_date', 'analytics', ['date'], unique=True)


def downgrade() -> None:
    op.drop_table('analytics')
    op.drop_table('affiliate_clicks')
    op.drop_table('blog_posts')
    op.drop_table('webhook_events')
    op.drop_table('billing_records')
    op.drop_index('uq_subscriptions_active_user', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('users')
