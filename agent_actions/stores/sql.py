"""SQLAlchemy-backed action and agent stores.

Uses SQLAlchemy with SQLite by default. Reference lists and metadata are
stored as JSON columns; secret metadata fields arrive already encrypted.
Each store call opens its own session so calls are safe from worker threads.
"""

import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, cast, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_settings
from ..errors import NotFound, StoreError
from ..logging_config import get_logger
from ..models import Action, Agent, AgentQuery
from .base import ActionStore, AgentStore

logger = get_logger(__name__)

Base = declarative_base()


class ActionRecord(Base):
    """Action storage model."""

    __tablename__ = "actions"

    id = Column(Integer, primary_key=True, index=True)
    action_id = Column(String(64), unique=True, nullable=False, index=True)
    user = Column(String(255), nullable=False, index=True)
    agent_id = Column(String(255), nullable=True)
    # "metadata" is reserved on declarative classes
    action_metadata = Column("metadata", JSON, nullable=False, default=dict)
    functions = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ActionRecord(action_id={self.action_id}, user={self.user})>"

    def to_model(self) -> Action:
        return Action(
            id=self.action_id,
            owner=self.user,
            agent_id=self.agent_id,
            metadata=dict(self.action_metadata or {}),
            function_names=list(self.functions or []),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class AgentRecord(Base):
    """Agent storage model (only the fields the synchronizer touches)."""

    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    agent_id = Column(String(64), unique=True, nullable=False, index=True)
    author = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    actions = Column(JSON, nullable=False, default=list)
    tools = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AgentRecord(agent_id={self.agent_id}, author={self.author})>"

    def to_model(self) -> Agent:
        return Agent(
            id=self.agent_id,
            author=self.author,
            name=self.name or "",
            action_refs=list(self.actions or []),
            tool_refs=list(self.tools or []),
        )


# Database setup
def get_database_url() -> str:
    """Get database URL from settings or default to SQLite."""
    settings = get_settings()

    if settings.database_url:
        return settings.database_url

    db_path = os.path.join(os.getcwd(), "agent_actions.db")
    return f"sqlite:///{db_path}"


def get_engine(database_url: Optional[str] = None):
    """Get SQLAlchemy engine."""
    database_url = database_url or get_database_url()
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)
    kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def get_session_local(engine=None) -> sessionmaker:
    """Get session factory."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine or get_engine())


def init_db(engine=None):
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine or get_engine())


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _SqlStore:
    """Session handling shared by the SQL stores."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _fail(db: Session, operation: str, error: SQLAlchemyError) -> StoreError:
        db.rollback()
        logger.error(f"Store operation failed: {operation}", exc_info=True)
        return StoreError(f"Store operation failed: {operation}")


class SqlActionStore(_SqlStore, ActionStore):
    """Action store backed by the ``actions`` table."""

    def get(self, action_id: str) -> Optional[Action]:
        db = self._session()
        try:
            record = db.query(ActionRecord).filter(ActionRecord.action_id == action_id).first()
            return record.to_model() if record else None
        except SQLAlchemyError as e:
            raise self._fail(db, "get_action", e) from e
        finally:
            db.close()

    def upsert(self, action_id: str, fields: Dict[str, Any]) -> Action:
        db = self._session()
        try:
            record = db.query(ActionRecord).filter(ActionRecord.action_id == action_id).first()
            if record is None:
                record = ActionRecord(action_id=action_id)
                db.add(record)

            if "owner" in fields:
                record.user = fields["owner"]
            if "agent_id" in fields:
                record.agent_id = fields["agent_id"]
            if "metadata" in fields:
                record.action_metadata = dict(fields["metadata"])
            if "function_names" in fields:
                record.functions = list(fields["function_names"])

            db.commit()
            db.refresh(record)
            return record.to_model()
        except SQLAlchemyError as e:
            raise self._fail(db, "upsert_action", e) from e
        finally:
            db.close()

    def delete(self, action_id: str) -> Optional[Action]:
        db = self._session()
        try:
            record = db.query(ActionRecord).filter(ActionRecord.action_id == action_id).first()
            if record is None:
                return None
            action = record.to_model()
            db.delete(record)
            db.commit()
            return action
        except SQLAlchemyError as e:
            raise self._fail(db, "delete_action", e) from e
        finally:
            db.close()

    def list(self, owner: Optional[str] = None) -> List[Action]:
        db = self._session()
        try:
            query = db.query(ActionRecord)
            if owner is not None:
                query = query.filter(ActionRecord.user == owner)
            return [record.to_model() for record in query.order_by(ActionRecord.id).all()]
        except SQLAlchemyError as e:
            raise self._fail(db, "list_actions", e) from e
        finally:
            db.close()


class SqlAgentStore(_SqlStore, AgentStore):
    """Agent store backed by the ``agents`` table."""

    def _filtered(self, db: Session, query: AgentQuery):
        q = db.query(AgentRecord)
        if query.id is not None:
            q = q.filter(AgentRecord.agent_id == query.id)
        if query.author is not None:
            q = q.filter(AgentRecord.author == query.author)
        if query.action_id is not None:
            # Coarse match on the serialized list, confirmed per element below
            pattern = f"%{_escape_like(query.action_id)}%"
            q = q.filter(cast(AgentRecord.actions, String).like(pattern, escape="\\"))
        return q

    def get(self, query: AgentQuery) -> Optional[Agent]:
        db = self._session()
        try:
            for record in self._filtered(db, query).order_by(AgentRecord.id).all():
                agent = record.to_model()
                if query.matches(agent):
                    return agent
            return None
        except SQLAlchemyError as e:
            raise self._fail(db, "get_agent", e) from e
        finally:
            db.close()

    def query_many(self, query: AgentQuery) -> List[Agent]:
        db = self._session()
        try:
            agents = [record.to_model() for record in self._filtered(db, query).order_by(AgentRecord.id).all()]
            return [agent for agent in agents if query.matches(agent)]
        except SQLAlchemyError as e:
            raise self._fail(db, "query_agents", e) from e
        finally:
            db.close()

    def update(self, query: AgentQuery, fields: Dict[str, Any]) -> Agent:
        db = self._session()
        try:
            record = next(
                (r for r in self._filtered(db, query).order_by(AgentRecord.id).all()
                 if query.matches(r.to_model())),
                None,
            )
            if record is None:
                raise NotFound("Agent not found")

            # Assign new lists so the JSON columns are flagged as modified
            if "action_refs" in fields:
                record.actions = list(fields["action_refs"])
            if "tool_refs" in fields:
                record.tools = list(fields["tool_refs"])
            if "name" in fields:
                record.name = fields["name"]

            db.commit()
            db.refresh(record)
            return record.to_model()
        except SQLAlchemyError as e:
            raise self._fail(db, "update_agent", e) from e
        finally:
            db.close()

    def create(self, agent: Agent) -> Agent:
        db = self._session()
        try:
            record = AgentRecord(
                agent_id=agent.id,
                author=agent.author,
                name=agent.name,
                actions=list(agent.action_refs),
                tools=list(agent.tool_refs),
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return record.to_model()
        except SQLAlchemyError as e:
            raise self._fail(db, "create_agent", e) from e
        finally:
            db.close()
