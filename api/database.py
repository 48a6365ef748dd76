from datetime import datetime, timezone

import sqlalchemy as sa
from databases import Database

metadata = sa.MetaData()


def create_database(database_url: str) -> Database:
    """
    Create a database instance - works with SQLite or PostgreSQL.
    The connection is opened by the application lifespan.
    """
    return Database(database_url)


videos = sa.Table(
    "videos",
    metadata,
    # Opaque identifier; records created by this service use UUID4 strings
    sa.Column("id", sa.String(64), primary_key=True),
    # Owner; set on creation and never rewritten by updates
    sa.Column("user_id", sa.String(64), nullable=False),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("description", sa.Text, default=""),
    # Either a base64 data URL or a URL under the assets base URL
    sa.Column("thumbnail_url", sa.Text, nullable=True),
    sa.Column("video_url", sa.Text, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)),
    sa.Column("updated_at", sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)),
    sa.Index("ix_videos_user_id", "user_id"),
    sa.Index("ix_videos_created_at", "created_at"),
)


def create_tables(database_url: str):
    """
    Create database tables directly using SQLAlchemy metadata.
    This creates all tables if they don't exist.
    """
    engine = sa.create_engine(database_url)
    metadata.create_all(engine)
    engine.dispose()


if __name__ == "__main__":
    from config import DATABASE_URL

    create_tables(DATABASE_URL)
    print("Database tables created successfully!")
