"""add news tables

Revision ID: 8c4e2b6f0d31
Revises: 3f1a9c2d7b10
Create Date: 2026-01-20 16:42:55.102934

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c4e2b6f0d31'
down_revision: Union[str, Sequence[str], None] = '3f1a9c2d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Tracked entities, revenue owner call diets, articles and news config."""
    op.create_table(
        'tracked_companies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('ticker', sa.String(16), nullable=True),
        sa.Column('cik', sa.String(16), nullable=True),
        sa.Column('cusip', sa.String(16), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_table(
        'tracked_people',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('title', sa.String(200), nullable=True),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['tracked_companies.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table(
        'news_tags',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('category', sa.String(32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_table(
        'revenue_owners',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    for table, column, target in (
        ('revenue_owner_companies', 'company_id', 'tracked_companies'),
        ('revenue_owner_people', 'person_id', 'tracked_people'),
        ('revenue_owner_tags', 'tag_id', 'news_tags'),
    ):
        op.create_table(
            table,
            sa.Column('revenue_owner_id', sa.Integer(), nullable=False),
            sa.Column(column, sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['revenue_owner_id'], ['revenue_owners.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint([column], [f'{target}.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('revenue_owner_id', column)
        )

    op.create_table(
        'news_articles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('headline', sa.String(500), nullable=False),
        sa.Column('short_summary', sa.Text(), nullable=True),
        sa.Column('long_summary', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('why_it_matters', sa.Text(), nullable=True),
        sa.Column('source_url', sa.String(2048), nullable=False),
        sa.Column('source_name', sa.String(255), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('fetched_at', sa.DateTime(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('person_id', sa.Integer(), nullable=True),
        sa.Column('tag_id', sa.Integer(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='new_article'),
        sa.Column('match_type', sa.String(16), nullable=True),
        sa.Column('fetch_layer', sa.String(16), nullable=True),
        sa.Column('is_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['company_id'], ['tracked_companies.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['person_id'], ['tracked_people.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['tag_id'], ['news_tags.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_url')
    )
    op.create_index(op.f('ix_news_articles_published_at'), 'news_articles', ['published_at'], unique=False)
    op.create_index(op.f('ix_news_articles_company_id'), 'news_articles', ['company_id'], unique=False)
    op.create_index(op.f('ix_news_articles_person_id'), 'news_articles', ['person_id'], unique=False)

    op.create_table(
        'article_sources',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('source_url', sa.String(2048), nullable=False),
        sa.Column('source_name', sa.String(255), nullable=True),
        sa.Column('fetch_layer', sa.String(16), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['article_id'], ['news_articles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('article_id', 'source_url', name='uq_article_sources_article_url')
    )
    op.create_index(op.f('ix_article_sources_article_id'), 'article_sources', ['article_id'], unique=False)

    op.create_table(
        'article_revenue_owners',
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('revenue_owner_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['article_id'], ['news_articles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['revenue_owner_id'], ['revenue_owners.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('article_id', 'revenue_owner_id')
    )

    op.create_table(
        'news_config',
        sa.Column('key', sa.String(64), nullable=False),
        sa.Column('value', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )


def downgrade() -> None:
    op.drop_table('news_config')
    op.drop_table('article_revenue_owners')
    op.drop_index(op.f('ix_article_sources_article_id'), table_name='article_sources')
    op.drop_table('article_sources')
    op.drop_index(op.f('ix_news_articles_person_id'), table_name='news_articles')
    op.drop_index(op.f('ix_news_articles_company_id'), table_name='news_articles')
    op.drop_index(op.f('ix_news_articles_published_at'), table_name='news_articles')
    op.drop_table('news_articles')
    op.drop_table('revenue_owner_tags')
    op.drop_table('revenue_owner_people')
    op.drop_table('revenue_owner_companies')
    op.drop_table('revenue_owners')
    op.drop_table('news_tags')
    op.drop_table('tracked_people')
    op.drop_table('tracked_companies')
