"""
Database schema definition for the page identity store.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Index, Integer, MetaData, Table, Text

# Using a standard naming convention for database objects
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

page_identities_table = Table(
    "page_identities",
    metadata,
    Column("id", Text, primary_key=True),
    Column("normalized_url", Text, nullable=False),
    Column("canonical_url", Text, nullable=True),
    Column("content_signature", Text, nullable=False),
    Column("layout_signature", Text, nullable=False),
    Column("layout_tokens", JSON, nullable=False, default=list),
    Column("text_token_sample", Integer, nullable=False, default=0),
    Column("source_urls", JSON, nullable=False, default=list),
    # ISO-8601 UTC strings; lexical order is chronological order
    Column("last_seen_at", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    # Set when reconciliation folds this record into another one
    Column("merged_into", Text, nullable=True),
)

Index("ix_page_identities_normalized_url", page_identities_table.c.normalized_url)
Index("ix_page_identities_canonical_url", page_identities_table.c.canonical_url)
Index("ix_page_identities_last_seen_at", page_identities_table.c.last_seen_at)
Index(
    "ix_page_identities_urls",
    page_identities_table.c.normalized_url,
    page_identities_table.c.canonical_url,
)

PAGE_IDENTITY_COLUMNS = tuple(column.name for column in page_identities_table.columns)
