"""Initial schema for the label pipeline.

Revision ID: 0001
Revises:
Create Date: 2026-01-01

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

IN_FLIGHT = sa.text("status IN ('pending', 'processing')")


def upgrade() -> None:
    # Catalog
    op.create_table(
        "regions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("country", sa.String(100), nullable=False),
        sa.Column("normalized_key", sa.String(400), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_regions_country", "regions", ["country"])

    op.create_table(
        "producers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False, unique=True),
        sa.Column("region_id", sa.String(36), sa.ForeignKey("regions.id"), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_producers_region_id", "producers", ["region_id"])

    op.create_table(
        "wines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("producer_id", sa.String(36), sa.ForeignKey("producers.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False),
        sa.Column("is_non_vintage", sa.Boolean(), nullable=True),
        sa.Column("wine_type", sa.String(20), nullable=True),
        sa.Column("color", sa.String(50), nullable=True),
        sa.Column("style", sa.String(100), nullable=True),
        sa.Column("food_pairings_json", sa.Text(), nullable=True),
        sa.Column("serving_temperature", sa.String(100), nullable=True),
        sa.Column("tasting_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("producer_id", "normalized_name", name="uq_wines_producer_name"),
    )
    op.create_index("ix_wines_producer_id", "wines", ["producer_id"])

    op.create_table(
        "vintages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wine_id", sa.String(36), sa.ForeignKey("wines.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("abv", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("wine_id", "year", name="uq_vintages_wine_year"),
    )
    op.create_index("ix_vintages_wine_id", "vintages", ["wine_id"])

    op.create_table(
        "grape_varietals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "vintage_varietals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("vintage_id", sa.String(36), sa.ForeignKey("vintages.id"), nullable=False),
        sa.Column(
            "varietal_id", sa.String(36), sa.ForeignKey("grape_varietals.id"), nullable=False
        ),
        sa.Column("percent", sa.Float(), nullable=True),
        sa.UniqueConstraint("vintage_id", "varietal_id", name="uq_vintage_varietals_pair"),
    )
    op.create_index("ix_vintage_varietals_vintage_id", "vintage_varietals", ["vintage_id"])

    # Vectors
    op.create_table(
        "wine_identity_embeddings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wine_id", sa.String(36), sa.ForeignKey("wines.id"), nullable=False),
        sa.Column("vector_json", sa.Text(), nullable=False),
        sa.Column("source_text", sa.Text(), nullable=False),
        sa.Column("embedding_model", sa.String(100), nullable=False),
        sa.Column("embedding_version", sa.Integer(), nullable=False),
        sa.Column("completeness_score", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint(
            "wine_id", "embedding_model", "embedding_version", name="uq_identity_model_version"
        ),
    )
    op.create_index(
        "ix_wine_identity_embeddings_wine_id", "wine_identity_embeddings", ["wine_id"]
    )

    op.create_table(
        "vector_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("namespace", sa.String(100), nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("vector_json", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("namespace", "key", name="uq_vector_entries_namespace_key"),
    )
    op.create_index("ix_vector_entries_namespace", "vector_entries", ["namespace"])

    # Queues
    op.create_table(
        "wine_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=False),
        sa.Column("ocr_text", sa.Text(), nullable=True),
        sa.Column("scan_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("processed_data_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_wine_queue_user_id", "wine_queue", ["user_id"])
    op.create_index("ix_wine_queue_scan_id", "wine_queue", ["scan_id"])
    op.create_index("ix_wine_queue_idempotency_key", "wine_queue", ["idempotency_key"])
    op.create_index("ix_wine_queue_status_created", "wine_queue", ["status", "created_at"])
    op.create_index(
        "uq_wine_queue_in_flight_key",
        "wine_queue",
        ["user_id", "idempotency_key"],
        unique=True,
        sqlite_where=IN_FLIGHT,
        postgresql_where=IN_FLIGHT,
    )

    op.create_table(
        "enrichment_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("vintage_id", sa.String(36), nullable=False),
        sa.Column("wine_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("producer_name", sa.String(255), nullable=False),
        sa.Column("wine_name", sa.String(255), nullable=False),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("region", sa.String(255), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(512), nullable=False),
        sa.Column("enrichment_data_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_enrichment_queue_vintage_id", "enrichment_queue", ["vintage_id"])
    op.create_index("ix_enrichment_queue_wine_id", "enrichment_queue", ["wine_id"])
    op.create_index(
        "ix_enrichment_queue_idempotency_key", "enrichment_queue", ["idempotency_key"]
    )
    op.create_index(
        "ix_enrichment_queue_status_priority",
        "enrichment_queue",
        ["status", "priority", "created_at"],
    )
    op.create_index(
        "uq_enrichment_queue_in_flight_key",
        "enrichment_queue",
        ["idempotency_key"],
        unique=True,
        sqlite_where=IN_FLIGHT,
        postgresql_where=IN_FLIGHT,
    )

    op.create_table(
        "embedding_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_type", sa.String(20), nullable=False),
        sa.Column("wine_id", sa.String(36), nullable=False),
        sa.Column("vintage_id", sa.String(36), nullable=True),
        sa.Column("scan_id", sa.String(64), nullable=True),
        sa.Column("input_text", sa.Text(), nullable=True),
        sa.Column("input_image_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_embedding_queue_wine_id", "embedding_queue", ["wine_id"])
    op.create_index(
        "ix_embedding_queue_idempotency_key", "embedding_queue", ["idempotency_key"]
    )
    op.create_index(
        "ix_embedding_queue_type_status",
        "embedding_queue",
        ["job_type", "status", "created_at"],
    )
    op.create_index(
        "uq_embedding_queue_in_flight_key",
        "embedding_queue",
        ["idempotency_key"],
        unique=True,
        sqlite_where=IN_FLIGHT,
        postgresql_where=IN_FLIGHT,
    )


def downgrade() -> None:
    op.drop_table("embedding_queue")
    op.drop_table("enrichment_queue")
    op.drop_table("wine_queue")
    op.drop_table("vector_entries")
    op.drop_table("wine_identity_embeddings")
    op.drop_table("vintage_varietals")
    op.drop_table("grape_varietals")
    op.drop_table("vintages")
    op.drop_table("wines")
    op.drop_table("producers")
    op.drop_table("regions")
