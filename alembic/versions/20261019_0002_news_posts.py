"""bilingual news posts and their images

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:02:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0002'
down_revision = '20261019_0001'
branch_labels = None
depends_on = None


def _index_exists(inspector, table_name: str, index_name: str) -> bool:
    return any(idx.get('name') == index_name for idx in inspector.get_indexes(table_name))


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if 'news_posts' not in existing_tables:
        op.create_table(
            'news_posts',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('slug', sa.String(length=120), nullable=False),
            sa.Column('title_en', sa.String(length=200), nullable=False),
            sa.Column('title_ta', sa.String(length=200), nullable=False, server_default=''),
            sa.Column('summary_en', sa.String(length=300), nullable=False),
            sa.Column('summary_ta', sa.String(length=300), nullable=False, server_default=''),
            sa.Column('body_en', sa.Text(), nullable=False),
            sa.Column('body_ta', sa.Text(), nullable=False, server_default=''),
            sa.Column('category', sa.String(length=30), nullable=False, server_default='school-news'),
            sa.Column('tags', sa.JSON(), nullable=True),
            sa.Column('meta_description_en', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('meta_description_ta', sa.String(length=160), nullable=False, server_default=''),
            sa.Column('meta_keywords', sa.JSON(), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
            sa.Column('doc_status', sa.String(length=20), nullable=False, server_default='active'),
            sa.Column('priority', sa.Integer(), nullable=False, server_default='50'),
            sa.Column('is_pinned', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('start_date', sa.DateTime(), nullable=True),
            sa.Column('end_date', sa.DateTime(), nullable=True),
            sa.Column('author_id', sa.Integer(), sa.ForeignKey('auth_users.id'), nullable=False),
            sa.Column('author_name', sa.String(length=180), nullable=False, server_default=''),
            sa.Column('author_role', sa.String(length=20), nullable=False, server_default='teacher'),
            sa.Column('submitted_at', sa.DateTime(), nullable=True),
            sa.Column('reviewed_by', sa.Integer(), nullable=True),
            sa.Column('reviewed_by_name', sa.String(length=180), nullable=True),
            sa.Column('reviewed_at', sa.DateTime(), nullable=True),
            sa.Column('rejection_reason', sa.Text(), nullable=True),
            sa.Column('published_at', sa.DateTime(), nullable=True),
            sa.Column('published_by', sa.Integer(), nullable=True),
            sa.Column('published_by_name', sa.String(length=180), nullable=True),
            sa.Column('unpublished_at', sa.DateTime(), nullable=True),
            sa.Column('unpublished_by', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        )

    if 'news_post_images' not in existing_tables:
        op.create_table(
            'news_post_images',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('post_id', sa.Integer(), sa.ForeignKey('news_posts.id'), nullable=False),
            sa.Column('kind', sa.String(length=20), nullable=False, server_default='gallery'),
            sa.Column('url', sa.String(length=1000), nullable=False),
            sa.Column('thumbnail_url', sa.String(length=1000), nullable=False, server_default=''),
            sa.Column('alt_en', sa.String(length=300), nullable=False, server_default=''),
            sa.Column('alt_ta', sa.String(length=300), nullable=False, server_default=''),
            sa.Column('caption_en', sa.String(length=500), nullable=False, server_default=''),
            sa.Column('caption_ta', sa.String(length=500), nullable=False, server_default=''),
            sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        )

    inspector = sa.inspect(bind)
    wanted = (
        ('news_posts', 'ix_news_posts_id', ['id'], False),
        ('news_posts', 'ix_news_posts_slug', ['slug'], True),
        ('news_posts', 'ix_news_posts_category', ['category'], False),
        ('news_posts', 'ix_news_posts_status', ['status'], False),
        ('news_posts', 'ix_news_posts_doc_status', ['doc_status'], False),
        ('news_posts', 'ix_news_posts_author_id', ['author_id'], False),
        ('news_posts', 'ix_news_posts_published_at', ['published_at'], False),
        ('news_posts', 'ix_news_posts_status_doc_status', ['status', 'doc_status'], False),
        ('news_posts', 'ix_news_posts_public_order', ['status', 'is_pinned', 'priority', 'published_at'], False),
        ('news_post_images', 'ix_news_post_images_id', ['id'], False),
        ('news_post_images', 'ix_news_post_images_post_id', ['post_id'], False),
        ('news_post_images', 'ix_news_post_images_post_kind', ['post_id', 'kind'], False),
    )
    for table_name, index_name, columns, unique in wanted:
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=unique)


def downgrade() -> None:
    existing_tables = set(sa.inspect(op.get_bind()).get_table_names())
    for table_name in ('news_post_images', 'news_posts'):
        if table_name in existing_tables:
            op.drop_table(table_name)
