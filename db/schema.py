from __future__ import annotations

import sqlalchemy as sa


# Mirrors the Alembic head revision. Used for direct creation and by the seeder.
METADATA = sa.MetaData()

authors = sa.Table(
    "authors",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("name", sa.Text(), nullable=False),
    sa.Column("biography", sa.Text(), nullable=True),
    sa.Column("birth_date", sa.Date(), nullable=False),
    sa.UniqueConstraint("name", name="uq_authors_name"),
)

books = sa.Table(
    "books",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("author_id", sa.Integer(), sa.ForeignKey("authors.id", ondelete="CASCADE"), nullable=False),
    sa.Column("title", sa.Text(), nullable=False),
    sa.Column("published_on", sa.Date(), nullable=True),
    sa.Column("isbn", sa.Text(), nullable=True),
    sa.UniqueConstraint("isbn", name="uq_books_isbn"),
    sa.Index("idx_books_author", "author_id"),
)

reviews = sa.Table(
    "reviews",
    METADATA,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("book_id", sa.Integer(), sa.ForeignKey("books.id", ondelete="CASCADE"), nullable=False),
    sa.Column("reviewer", sa.Text(), nullable=False),
    sa.Column("rating", sa.Integer(), nullable=False),
    sa.Column("body", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),
    sa.Index("idx_reviews_book", "book_id"),
)

APP_TABLES = ("authors", "books", "reviews")
