"""initial schema: billing, ingest runs and API-Football entities

Revision ID: a1c0f3d9e2b7
Revises:
Create Date: 2026-10-19 09:12:40.118305
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "a1c0f3d9e2b7"
down_revision = None
branch_labels = None
depends_on = None


def _seen():
    return [
        sa.Column("provider_updated_at", sa.DateTime(), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(), nullable=False),
    ]


def _fk(col, target, nullable=False, ondelete=None, index=True):
    return sa.Column(
        col, sa.BigInteger(), sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable, index=index,
    )


def upgrade() -> None:
    # --- billing ---
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("firebase_uid", sa.String(), nullable=False, unique=True, index=True),
        sa.Column("email", sa.String(), nullable=True, index=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("avatar_url", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=True, server_default="false"),
        sa.Column("created_at", sa.DateTime(), nullable=True, index=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("user_id", "users.id", ondelete="CASCADE"),
        sa.Column("state", sa.String(), nullable=False, index=True),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True, index=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, index=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "uq_subscriptions_user_open", "subscriptions", ["user_id"], unique=True,
        postgresql_where=sa.text("state IN ('pending', 'active')"),
        sqlite_where=sa.text("state IN ('pending', 'active')"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("subscription_id", "subscriptions.id", ondelete="CASCADE"),
        sa.Column("internal_reference", sa.String(), nullable=False, unique=True, index=True),
        sa.Column("provider_reference", sa.String(), nullable=True, index=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "provider_webhook_events",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("internal_reference", sa.String(), nullable=True, index=True),
        sa.Column("provider_reference", sa.String(), nullable=True),
        sa.Column("payment_status", sa.String(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=False, index=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=True, index=True),
    )

    op.create_table(
        "ingest_runs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("started_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("summary", sa.JSON(), nullable=True),
    )
    op.create_index(
        "uq_ingest_runs_running", "ingest_runs", ["status"], unique=True,
        postgresql_where=sa.text("status = 'running'"),
        sqlite_where=sa.text("status = 'running'"),
    )

    # --- reference data ---
    op.create_table(
        "countries",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True, index=True),
        sa.Column("code", sa.String(), nullable=True),
        sa.Column("flag", sa.String(), nullable=True),
        *_seen(),
    )

    op.create_table(
        "leagues",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=True),
        sa.Column("logo", sa.String(), nullable=True),
        _fk("country_id", "countries.id"),
        *_seen(),
    )

    op.create_table(
        "seasons",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("league_id", "leagues.id"),
        sa.Column("league_api_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("current", sa.Boolean(), nullable=True),
        *_seen(),
        sa.UniqueConstraint("league_api_id", "year", name="uq_season_league_year"),
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(), nullable=False, index=True),
        sa.Column("code", sa.String(), nullable=True),
        sa.Column("founded", sa.Integer(), nullable=True),
        sa.Column("national", sa.Boolean(), nullable=True),
        sa.Column("logo", sa.String(), nullable=True),
        _fk("country_id", "countries.id", nullable=True),
        *_seen(),
    )

    op.create_table(
        "venues",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("surface", sa.String(), nullable=True),
        *_seen(),
    )

    op.create_table(
        "players",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(), nullable=False, index=True),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("nationality", sa.String(), nullable=True),
        sa.Column("position", sa.String(), nullable=True),
        sa.Column("photo", sa.String(), nullable=True),
        _fk("team_id", "teams.id", nullable=True),
        *_seen(),
    )

    op.create_table(
        "coaches",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("nationality", sa.String(), nullable=True),
        sa.Column("photo", sa.String(), nullable=True),
        _fk("team_id", "teams.id", nullable=True),
        *_seen(),
    )

    op.create_table(
        "fixture_statuses",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("short", sa.String(), nullable=False, unique=True),
        sa.Column("long", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=True),
        *_seen(),
    )

    op.create_table(
        "event_types",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("details", sa.String(), nullable=True),
        *_seen(),
    )

    op.create_table(
        "markets",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(), nullable=False),
        *_seen(),
    )

    op.create_table(
        "outcomes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("market_id", "markets.id"),
        sa.Column("market_api_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        *_seen(),
        sa.UniqueConstraint("market_api_id", "name", name="uq_outcome_market_name"),
    )

    op.create_table(
        "providers",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(), nullable=False),
        *_seen(),
    )

    # --- fixtures & fixture-scoped data ---
    op.create_table(
        "fixtures",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("api_id", sa.Integer(), nullable=False, unique=True, index=True),
        _fk("league_id", "leagues.id"),
        _fk("season_id", "seasons.id"),
        _fk("home_team_id", "teams.id"),
        _fk("away_team_id", "teams.id"),
        _fk("venue_id", "venues.id", nullable=True, index=False),
        _fk("status_id", "fixture_statuses.id", nullable=True, index=False),
        sa.Column("kickoff_utc", sa.DateTime(), nullable=True, index=True),
        sa.Column("referee", sa.String(), nullable=True),
        sa.Column("round", sa.String(), nullable=True),
        sa.Column("elapsed", sa.Integer(), nullable=True),
        sa.Column("goals_home", sa.Integer(), nullable=True),
        sa.Column("goals_away", sa.Integer(), nullable=True),
        *_seen(),
    )

    op.create_table(
        "odds",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("fixture_id", "fixtures.id", ondelete="CASCADE"),
        _fk("bookmaker_id", "providers.id"),
        _fk("market_id", "markets.id"),
        _fk("outcome_id", "outcomes.id"),
        sa.Column("price", sa.Float(), nullable=False),
        *_seen(),
        sa.UniqueConstraint("fixture_id", "bookmaker_id", "market_id", "outcome_id", name="uq_odds_row"),
    )
    op.create_index("ix_odds_fx_mkt_book", "odds", ["fixture_id", "market_id", "bookmaker_id"])

    op.create_table(
        "predictions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "fixture_id", sa.BigInteger(),
            sa.ForeignKey("fixtures.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("winner_team_id", sa.BigInteger(), sa.ForeignKey("teams.id"), nullable=True),
        sa.Column("winner_comment", sa.String(), nullable=True),
        sa.Column("win_or_draw", sa.Boolean(), nullable=True),
        sa.Column("under_over", sa.String(), nullable=True),
        sa.Column("goals_home", sa.String(), nullable=True),
        sa.Column("goals_away", sa.String(), nullable=True),
        sa.Column("advice", sa.String(), nullable=True),
        sa.Column("percent_home", sa.Float(), nullable=True),
        sa.Column("percent_draw", sa.Float(), nullable=True),
        sa.Column("percent_away", sa.Float(), nullable=True),
        *_seen(),
    )

    op.create_table(
        "standings",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("league_id", "leagues.id"),
        _fk("season_id", "seasons.id"),
        _fk("team_id", "teams.id"),
        sa.Column("group_name", sa.String(), nullable=False, server_default=""),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("points", sa.Integer(), nullable=True),
        sa.Column("goals_diff", sa.Integer(), nullable=True),
        sa.Column("form", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("played", sa.Integer(), nullable=True),
        sa.Column("win", sa.Integer(), nullable=True),
        sa.Column("draw", sa.Integer(), nullable=True),
        sa.Column("lose", sa.Integer(), nullable=True),
        sa.Column("goals_for", sa.Integer(), nullable=True),
        sa.Column("goals_against", sa.Integer(), nullable=True),
        *_seen(),
        sa.UniqueConstraint("season_id", "team_id", "group_name", name="uq_standing_season_team_group"),
    )

    op.create_table(
        "statisticals",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("fixture_id", "fixtures.id", ondelete="CASCADE"),
        _fk("team_id", "teams.id"),
        sa.Column("stat_type", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=True),
        *_seen(),
        sa.UniqueConstraint("fixture_id", "team_id", "stat_type", name="uq_statistical_fx_team_type"),
    )

    op.create_table(
        "lineups",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        _fk("fixture_id", "fixtures.id", ondelete="CASCADE"),
        _fk("team_id", "teams.id"),
        _fk("player_id", "players.id"),
        sa.Column("formation", sa.String(), nullable=True),
        sa.Column("position", sa.String(), nullable=True),
        sa.Column("number", sa.Integer(), nullable=True),
        sa.Column("grid", sa.String(), nullable=True),
        sa.Column("is_starter", sa.Boolean(), nullable=True),
        *_seen(),
        sa.UniqueConstraint("fixture_id", "team_id", "player_id", name="uq_lineup_fx_team_player"),
    )


def downgrade() -> None:
    op.drop_index("uq_ingest_runs_running", table_name="ingest_runs")
    for table in (
        "lineups", "statisticals", "standings", "predictions", "odds", "fixtures",
        "providers", "outcomes", "markets", "event_types", "fixture_statuses",
        "coaches", "players", "venues", "teams", "seasons", "leagues", "countries",
        "ingest_runs", "provider_webhook_events", "payments",
    ):
        op.drop_table(table)
    op.drop_index("uq_subscriptions_user_open", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("users")
