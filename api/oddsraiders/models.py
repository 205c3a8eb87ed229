from enum import Enum

from sqlalchemy import (
    Column, BigInteger, Integer, String, Numeric, DateTime, Date, ForeignKey,
    UniqueConstraint, Index, Boolean, Float, JSON, text
)
from sqlalchemy.orm import relationship

from .db import Base
from .util import utcnow

# SQLite only auto-increments INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


# --- Billing states ----------------------------------------------------------

class SubscriptionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


OPEN_SUBSCRIPTION_STATES = (SubscriptionState.PENDING.value, SubscriptionState.ACTIVE.value)


class PaymentStatus(str, Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PAYMENT_STATUSES = (
    PaymentStatus.COMPLETED.value,
    PaymentStatus.FAILED.value,
    PaymentStatus.CANCELLED.value,
)


# --- Users, Subscriptions, Payments ------------------------------------------

class User(Base):
    __tablename__ = "users"

    id = Column(BigIntPK, primary_key=True)
    firebase_uid = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, index=True)
    display_name = Column(String)
    avatar_url = Column(String)
    is_admin = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(BigIntPK, primary_key=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    state = Column(String, nullable=False, default=SubscriptionState.PENDING.value, index=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True, index=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="subscriptions")
    payments = relationship("Payment", back_populates="subscription", cascade="all, delete-orphan")

    __table_args__ = (
        # at most one pending/active subscription per user, enforced by the store
        Index(
            "uq_subscriptions_user_open",
            "user_id",
            unique=True,
            postgresql_where=text("state IN ('pending', 'active')"),
            sqlite_where=text("state IN ('pending', 'active')"),
        ),
    )


class Payment(Base):
    __tablename__ = "payments"

    id = Column(BigIntPK, primary_key=True)
    subscription_id = Column(BigInteger, ForeignKey("subscriptions.id", ondelete="CASCADE"), index=True, nullable=False)
    internal_reference = Column(String, unique=True, index=True, nullable=False)  # our m_payment_id
    provider_reference = Column(String, nullable=True, index=True)               # payfast_reference
    status = Column(String, nullable=False, default=PaymentStatus.INITIATED.value)
    amount = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    subscription = relationship("Subscription", back_populates="payments")


class ProviderWebhookEvent(Base):
    """Audit trail of every payment notification, whatever its outcome."""
    __tablename__ = "provider_webhook_events"

    id = Column(BigIntPK, primary_key=True)
    provider = Column(String, nullable=False, default="payfast")
    internal_reference = Column(String, nullable=True, index=True)
    provider_reference = Column(String, nullable=True)
    payment_status = Column(String, nullable=True)
    outcome = Column(String, nullable=False, index=True)  # applied|duplicate|stale|rejected|malformed|unknown
    reason = Column(String, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    received_at = Column(DateTime, default=utcnow, index=True)


class IngestRun(Base):
    __tablename__ = "ingest_runs"

    id = Column(BigIntPK, primary_key=True)
    started_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="running")  # running|completed|cancelled|failed|abandoned
    summary = Column(JSON, nullable=True)

    __table_args__ = (
        # one running cycle across every process sharing the database
        Index(
            "uq_ingest_runs_running",
            "status",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )


# --- External sports entities (API-Football) ---------------------------------
#
# Each row carries the provider's natural key (api_id, or a composite for
# rows the provider does not number). They are created on first sighting and
# updated on later ones; ingestion never deletes them.

class ExternalMixin:
    provider_updated_at = Column(DateTime, nullable=True)   # provider-side last-modified, when it has one
    first_seen_at = Column(DateTime, default=utcnow, nullable=False)
    last_seen_at = Column(DateTime, default=utcnow, nullable=False)


class Country(ExternalMixin, Base):
    __tablename__ = "countries"

    id = Column(BigIntPK, primary_key=True)
    name = Column(String, unique=True, index=True, nullable=False)  # provider has no numeric id for countries
    code = Column(String, nullable=True)
    flag = Column(String, nullable=True)


class League(ExternalMixin, Base):
    __tablename__ = "leagues"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String)
    logo = Column(String)
    country_id = Column(BigInteger, ForeignKey("countries.id"), index=True, nullable=False)

    country = relationship("Country")
    seasons = relationship("Season", back_populates="league")


class Season(ExternalMixin, Base):
    __tablename__ = "seasons"

    id = Column(BigIntPK, primary_key=True)
    league_id = Column(BigInteger, ForeignKey("leagues.id"), index=True, nullable=False)
    league_api_id = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    start_date = Column(Date)
    end_date = Column(Date)
    current = Column(Boolean, default=False)

    league = relationship("League", back_populates="seasons")

    __table_args__ = (UniqueConstraint("league_api_id", "year", name="uq_season_league_year"),)


class Team(ExternalMixin, Base):
    __tablename__ = "teams"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, index=True)
    code = Column(String)
    founded = Column(Integer)
    national = Column(Boolean, default=False)
    logo = Column(String)
    country_id = Column(BigInteger, ForeignKey("countries.id"), index=True, nullable=True)

    country = relationship("Country")
    players = relationship("Player", back_populates="team")


class Venue(ExternalMixin, Base):
    __tablename__ = "venues"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    address = Column(String)
    city = Column(String)
    capacity = Column(Integer)
    surface = Column(String)


class Player(ExternalMixin, Base):
    __tablename__ = "players"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, index=True)
    first_name = Column(String)
    last_name = Column(String)
    age = Column(Integer)
    nationality = Column(String)
    position = Column(String)
    photo = Column(String)
    team_id = Column(BigInteger, ForeignKey("teams.id"), index=True, nullable=True)

    team = relationship("Team", back_populates="players")


class Coach(ExternalMixin, Base):
    __tablename__ = "coaches"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    first_name = Column(String)
    last_name = Column(String)
    nationality = Column(String)
    photo = Column(String)
    team_id = Column(BigInteger, ForeignKey("teams.id"), index=True, nullable=True)

    team = relationship("Team")


class FixtureStatus(ExternalMixin, Base):
    __tablename__ = "fixture_statuses"

    id = Column(BigIntPK, primary_key=True)
    short = Column(String, unique=True, nullable=False)   # "NS", "FT", ...
    long = Column(String)
    type = Column(String)                                 # Scheduled|In Play|Finished|...


class EventType(ExternalMixin, Base):
    __tablename__ = "event_types"

    id = Column(BigIntPK, primary_key=True)
    name = Column(String, unique=True, nullable=False)    # Goal|Card|subst|Var
    details = Column(String)


class Market(ExternalMixin, Base):
    __tablename__ = "markets"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)  # API-Football "bet" id
    name = Column(String, nullable=False)


class Outcome(ExternalMixin, Base):
    __tablename__ = "outcomes"

    id = Column(BigIntPK, primary_key=True)
    market_id = Column(BigInteger, ForeignKey("markets.id"), index=True, nullable=False)
    market_api_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)                 # "Home", "Over 2.5", ...

    market = relationship("Market")

    __table_args__ = (UniqueConstraint("market_api_id", "name", name="uq_outcome_market_name"),)


class Provider(ExternalMixin, Base):
    """A bookmaker quoting odds."""
    __tablename__ = "providers"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)


class Fixture(ExternalMixin, Base):
    __tablename__ = "fixtures"

    id = Column(BigIntPK, primary_key=True)
    api_id = Column(Integer, unique=True, index=True, nullable=False)
    league_id = Column(BigInteger, ForeignKey("leagues.id"), index=True, nullable=False)
    season_id = Column(BigInteger, ForeignKey("seasons.id"), index=True, nullable=False)
    home_team_id = Column(BigInteger, ForeignKey("teams.id"), index=True, nullable=False)
    away_team_id = Column(BigInteger, ForeignKey("teams.id"), index=True, nullable=False)
    venue_id = Column(BigInteger, ForeignKey("venues.id"), nullable=True)
    status_id = Column(BigInteger, ForeignKey("fixture_statuses.id"), nullable=True)

    kickoff_utc = Column(DateTime, index=True)
    referee = Column(String, nullable=True)
    round = Column(String, nullable=True)
    elapsed = Column(Integer, nullable=True)
    goals_home = Column(Integer, nullable=True)
    goals_away = Column(Integer, nullable=True)

    league = relationship("League")
    season = relationship("Season")
    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])
    venue = relationship("Venue")
    status = relationship("FixtureStatus")


class Odds(ExternalMixin, Base):
    __tablename__ = "odds"

    id = Column(BigIntPK, primary_key=True)
    fixture_id = Column(BigInteger, ForeignKey("fixtures.id", ondelete="CASCADE"), index=True, nullable=False)
    bookmaker_id = Column(BigInteger, ForeignKey("providers.id"), index=True, nullable=False)
    market_id = Column(BigInteger, ForeignKey("markets.id"), index=True, nullable=False)
    outcome_id = Column(BigInteger, ForeignKey("outcomes.id"), index=True, nullable=False)
    price = Column(Float, nullable=False)

    fixture = relationship("Fixture")
    bookmaker = relationship("Provider")
    market = relationship("Market")
    outcome = relationship("Outcome")

    __table_args__ = (
        UniqueConstraint("fixture_id", "bookmaker_id", "market_id", "outcome_id", name="uq_odds_row"),
        Index("ix_odds_fx_mkt_book", "fixture_id", "market_id", "bookmaker_id"),
    )


class Prediction(ExternalMixin, Base):
    __tablename__ = "predictions"

    id = Column(BigIntPK, primary_key=True)
    fixture_id = Column(BigInteger, ForeignKey("fixtures.id", ondelete="CASCADE"), unique=True, nullable=False)
    winner_team_id = Column(BigInteger, ForeignKey("teams.id"), nullable=True)
    winner_comment = Column(String)
    win_or_draw = Column(Boolean, nullable=True)
    under_over = Column(String)
    goals_home = Column(String)
    goals_away = Column(String)
    advice = Column(String)
    percent_home = Column(Float)
    percent_draw = Column(Float)
    percent_away = Column(Float)

    fixture = relationship("Fixture")
    winner_team = relationship("Team")


class Standing(ExternalMixin, Base):
    __tablename__ = "standings"

    id = Column(BigIntPK, primary_key=True)
    league_id = Column(BigInteger, ForeignKey("leagues.id"), index=True, nullable=False)
    season_id = Column(BigInteger, ForeignKey("seasons.id"), index=True, nullable=False)
    team_id = Column(BigInteger, ForeignKey("teams.id"), index=True, nullable=False)
    group_name = Column(String, nullable=False, default="")

    rank = Column(Integer)
    points = Column(Integer)
    goals_diff = Column(Integer)
    form = Column(String)
    description = Column(String)
    played = Column(Integer)
    win = Column(Integer)
    draw = Column(Integer)
    lose = Column(Integer)
    goals_for = Column(Integer)
    goals_against = Column(Integer)

    league = relationship("League")
    season = relationship("Season")
    team = relationship("Team")

    __table_args__ = (
        UniqueConstraint("season_id", "team_id", "group_name", name="uq_standing_season_team_group"),
    )


class Statistical(ExternalMixin, Base):
    """Team statistics for one fixture, one row per stat type."""
    __tablename__ = "statisticals"

    id = Column(BigIntPK, primary_key=True)
    fixture_id = Column(BigInteger, ForeignKey("fixtures.id", ondelete="CASCADE"), index=True, nullable=False)
    team_id = Column(BigInteger, ForeignKey("teams.id"), index=True, nullable=False)
    stat_type = Column(String, nullable=False)   # "Shots on Goal", "Ball Possession", ...
    value = Column(String, nullable=True)

    fixture = relationship("Fixture")
    team = relationship("Team")

    __table_args__ = (
        UniqueConstraint("fixture_id", "team_id", "stat_type", name="uq_statistical_fx_team_type"),
    )


class Lineup(ExternalMixin, Base):
    __tablename__ = "lineups"

    id = Column(BigIntPK, primary_key=True)
    fixture_id = Column(BigInteger, ForeignKey("fixtures.id", ondelete="CASCADE"), index=True, nullable=False)
    team_id = Column(BigInteger, ForeignKey("teams.id"), index=True, nullable=False)
    player_id = Column(BigInteger, ForeignKey("players.id"), index=True, nullable=False)
    formation = Column(String)
    position = Column(String)     # G|D|M|F
    number = Column(Integer)
    grid = Column(String)
    is_starter = Column(Boolean, default=True)

    fixture = relationship("Fixture")
    team = relationship("Team")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("fixture_id", "team_id", "player_id", name="uq_lineup_fx_team_player"),
    )
